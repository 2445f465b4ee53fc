"""Control API for runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
import logging
import math
import time

logger = logging.getLogger(__name__)


def json_safe(value):
    """Replace NaN and infinite floats, which JSON cannot carry, with None."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for triggering and inspecting sweeps."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the Jolokia engine
        """
        self.engine = engine
        self.app = FastAPI(title="Jolokia Collector Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current collector status."""
            last = self.engine.last_result
            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "sweep_count": self.engine.sweep_count,
                "servers": [s.name for s in self.engine.config.servers],
                "metrics": [m.name for m in self.engine.config.metrics],
                "last_sweep": last.summary() if last else None,
                "config": {
                    "context": self.engine.config.context,
                    "scheme": self.engine.config.scheme,
                    "timeout_s": self.engine.config.timeout_s,
                },
            }

        @self.app.post("/sweep")
        async def sweep():
            """Run one sweep over every server and metric."""
            try:
                result = await run_in_threadpool(self.engine.sweep)
            except Exception as e:
                logger.error(f"Error running sweep: {e}", exc_info=True)
                raise HTTPException(status_code=500, detail=str(e))

            payload = result.summary()
            payload["data"] = [
                {"measurement": m.name, "fields": json_safe(m.fields), "tags": m.tags}
                for m in result.measurements
            ]
            return payload

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
