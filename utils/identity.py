"""
Identity context: the single normalized shape of "who is calling".

Tokens are issued by the auth service. This module decodes the bearer
claim once at the boundary and hands the rest of the code an
``IdentityContext``; nothing downstream inspects raw token payloads. HTTP
routes and the websocket feeds build it the same way, through
``resolve_identity``.

Student resolution order:
1. ``x-student-id`` header
2. ``student_id`` query parameter
3. bearer claims ``student_id`` / ``sub`` / ``id``

Professor-capable callers always take their subject from the token.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt

import config
from errors import Forbidden, PayloadError, Unauthorized

logger = logging.getLogger("identity")

SUBJECT_CLAIMS = ("student_id", "sub", "id")


@dataclass(frozen=True)
class IdentityContext:
    subject_id: Optional[str] = None
    role: Optional[str] = None
    extra_claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def student_id(self) -> Optional[int]:
        return _as_id(self.subject_id)

    @property
    def is_professor(self) -> bool:
        return self.has_role(*config.PROFESSOR_ROLES)

    def has_role(self, *roles: str) -> bool:
        return bool(self.role) and self.role in roles


def _as_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token.strip(), config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise Unauthorized()


def decode_bearer(request: Request) -> Optional[Dict[str, Any]]:
    auth = request.headers.get("authorization")
    if not auth:
        return None
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return decode_token(token)


def resolve_identity(claims: Optional[Dict[str, Any]], student_hint: Optional[str] = None) -> IdentityContext:
    claims = claims or {}
    role = claims.get("role")
    role = str(role).lower() if role else None

    subject = next((claims[c] for c in SUBJECT_CLAIMS if claims.get(c) is not None), None)
    if student_hint and role not in config.PROFESSOR_ROLES:
        subject = student_hint

    extra = {k: v for k, v in claims.items() if k not in SUBJECT_CLAIMS and k != "role"}
    return IdentityContext(
        subject_id=str(subject) if subject is not None else None,
        role=role,
        extra_claims=extra,
    )


async def get_identity(request: Request) -> IdentityContext:
    hint = request.headers.get("x-student-id") or request.query_params.get("student_id")
    return resolve_identity(decode_bearer(request), hint)


async def require_student(identity: IdentityContext = Depends(get_identity)) -> int:
    student_id = identity.student_id
    if student_id is None:
        raise PayloadError("student_id_required")
    return student_id


def ensure_professor(identity: IdentityContext) -> IdentityContext:
    """Capability check: the token must carry a professor-capable role."""
    if not identity.is_professor:
        raise Forbidden(details=f"required role: {', '.join(config.PROFESSOR_ROLES)}")
    return identity


async def require_professor(identity: IdentityContext = Depends(get_identity)) -> IdentityContext:
    return ensure_professor(identity)
