"""
HTTP boundary for the cron trigger.

POST /api/ai/monitor runs one monitoring pass; GET reports status. Responses
use the ``{"success": ..., "data" | "error": ...}`` envelope the dashboard
expects.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from risk_monitor.bootstrap import build_pipeline, create_store
from risk_monitor.config import AppConfig, get_config
from risk_monitor.domain.errors import UnauthorizedTriggerError
from risk_monitor.services.common import configure_logging, logger
from risk_monitor.services.monitoring_run import MonitoringPipeline


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def create_app(
    pipeline: MonitoringPipeline | None = None, config: AppConfig | None = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "pipeline", None) is None:
            app_config = config or get_config()
            configure_logging(app_config.logging)
            app.state.pipeline = build_pipeline(app_config, create_store(app_config))
            logger.info("monitoring_api_started", environment=app_config.environment)
        yield

    app = FastAPI(title="Patient Risk Monitor", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.post("/api/ai/monitor")
    async def run_monitoring(
        request: Request, authorization: str | None = Header(default=None)
    ) -> JSONResponse:
        active: MonitoringPipeline = request.app.state.pipeline
        result = await active.run(bearer_token(authorization))

        if result.is_ok():
            summary = result.unwrap()
            return JSONResponse({"success": True, "data": summary.model_dump(mode="json")})

        error = result.unwrap_err()
        if isinstance(error, UnauthorizedTriggerError):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)
        return JSONResponse({"success": False, "error": str(error)}, status_code=503)

    @app.get("/api/ai/monitor")
    async def monitoring_status(request: Request) -> dict:
        active: MonitoringPipeline = request.app.state.pipeline
        return {"success": True, "data": active.status()}

    return app


def main() -> None:
    """Serve the trigger endpoint with the configured host and port."""
    config = get_config()
    uvicorn.run(
        "risk_monitor.api:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
    )


if __name__ == "__main__":
    main()
