from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from resumedrop.api.routes import router as automation_router
from resumedrop.config import get_settings
from resumedrop.core.runtime import get_scheduler
from resumedrop.db.init import init_database


def create_app(*, start_scheduler: bool = True) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name)

    @app.on_event("startup")
    async def _startup() -> None:
        init_database()
        if start_scheduler and settings.automation_enabled:
            get_scheduler().start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if start_scheduler:
            await get_scheduler().stop()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(automation_router)
    return app
