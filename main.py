import logging
from typing import Any, Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

import config
import models  # noqa: F401  registers tables on Base.metadata
from database import Database
from errors import ServiceError
from routes import notification_routes, professor_routes, student_routes
from services.payloads import payload_error
from utils.clock import Clock, utcnow
from utils.notifier import EventHub

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("main")


def create_app(
    database: Optional[Database] = None,
    notifier: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    app = FastAPI(title="University Assignments API", version="1.0")
    app.state.db = database or Database.from_config()
    app.state.notifier = notifier if notifier is not None else EventHub()
    app.state.clock = clock or utcnow

    # Startup event
    @app.on_event("startup")
    async def startup_event():
        try:
            await app.state.db.check_connection()
            logger.info("Application startup complete.")
        except Exception as e:
            logger.critical(f"Failed to connect to DB on startup: {e}")
            raise e

    # Shutdown event
    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.db.dispose()
        logger.info("Application shutting down.")

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed path ids and bodies report the same codes as every other 400
        error = payload_error(exc.errors())
        logger.info(f"{request.method} {request.url.path} rejected: {error.code}")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.FRONTEND_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(professor_routes.router)
    app.include_router(student_routes.router)
    app.include_router(notification_routes.router)

    # Health check endpoint
    @app.get("/")
    async def root():
        return {"message": "Backend running successfully"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
