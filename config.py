import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set.")

# Optional: toggle SQL echo via env
SQL_ECHO = os.getenv("SQL_ECHO", "False").lower() == "true"

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 10))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 20))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", 30))
# Upper bound (seconds) for one unit of work inside a transaction
DB_STATEMENT_TIMEOUT = float(os.getenv("DB_STATEMENT_TIMEOUT", 10))

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
PROFESSOR_ROLES = tuple(
    r.strip().lower() for r in os.getenv("PROFESSOR_ROLES", "professor").split(",") if r.strip()
)

FRONTEND_ORIGINS = os.getenv("FRONTEND_ORIGINS", "http://localhost:3000").split(",")
