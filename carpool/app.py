# carpool/app.py
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import build_engine, init_db, make_session_factory
from .errors import SlotEngineError, TransientStoreError
from .routers import slots
from .services.assignments import AssignmentManager
from .services.queries import SlotQueryService
from .settings import Settings

log = logging.getLogger("carpool")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(
        title="Carpool Schedule Slot API",
        version="0.1",
        docs_url="/docs",
        swagger_ui_parameters={"displayRequestDuration": True, "tryItOutEnabled": True},
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = build_engine(settings.DATABASE_URL, settings.TX_TIMEOUT_SEC, settings.SQL_ECHO)
    init_db(engine)
    session_factory = make_session_factory(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.assignments = AssignmentManager(session_factory, settings)
    app.state.queries = SlotQueryService(session_factory, settings)

    @app.exception_handler(SlotEngineError)
    def handle_slot_engine_error(request: Request, exc: SlotEngineError):
        if isinstance(exc, TransientStoreError):
            log.warning("%s %s -> %s", request.method, request.url.path, exc.message)
        else:
            log.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception):
        log.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # === HEALTH ===
    @app.get("/health")
    def health_check():
        return {"status": "ok", "message": "Carpool schedule API running"}

    # === INCLUDE ROUTERS ===
    app.include_router(slots.groups_router)
    app.include_router(slots.router)
    app.include_router(slots.assignments_router)

    log.info("Carpool API ready (db=%s)", engine.url.render_as_string(hide_password=True))
    return app
