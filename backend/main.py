import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine

from core.config import Settings, get_settings
from core.database import create_db_and_tables, get_engine
from core.exceptions import PortalError
from core.logging_config import setup_logging
from routes import admin, auth, complaints, documents, pages, toasts
from services.tabs import ClientFactory, TabRegistry, backend_factory
from utils.security import GuardRedirect

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    client_factory: Optional[ClientFactory] = None,
    sleep=None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)
    local = settings.BACKEND_MODE == "local"
    if local and engine is None:
        engine = get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if local:
            create_db_and_tables(engine)
        logger.info("%s started (%s backend)", settings.APP_NAME, settings.BACKEND_MODE)
        yield
        await app.state.tabs.shutdown()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.tabs = TabRegistry(settings, client_factory or backend_factory(settings, engine), sleep=sleep)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(GuardRedirect)
    async def guard_redirect_handler(request: Request, exc: GuardRedirect):
        return RedirectResponse(exc.location, status_code=303)

    if local:
        # files stored by the local backend are served at /uploads
        os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
        app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    app.include_router(pages.router)
    app.include_router(auth.router)
    app.include_router(complaints.router)
    app.include_router(documents.router)
    app.include_router(toasts.router)
    app.include_router(admin.router, prefix="/admin")

    # unknown pages go back home; must stay the last route
    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
    def unmatched(request: Request, path: str):
        # 303 turns form posts into a plain GET of the home page
        status_code = 307 if request.method == "GET" else 303
        return RedirectResponse("/", status_code=status_code)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=app.state.settings.SERVER_HOST,
        port=app.state.settings.SERVER_PORT,
        reload=app.state.settings.ENVIRONMENT == "development",
    )
