"""
Validator Sentinel - heartbeat detection and threshold alerting for an Axelar validator
"""

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from nats import connect as nats_connect

from apps.sentinel.service import MonitorService
from core.config import MonitorConfig
from otel_init import (
    attach_logging_handler,
    check_otlp_health,
    instrument_fastapi_app,
    setup_telemetry,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Validator Sentinel",
    description="Heartbeat detection and threshold alerting for a validator",
    version="1.0.0",
)
app.state.nats_client = None
app.state.service = None


@app.on_event("startup")
async def startup_event():
    """Run on startup."""
    setup_telemetry(service_name="validator-sentinel", service_version=app.version)
    instrument_fastapi_app(app)
    attach_logging_handler()

    config = MonitorConfig.from_env()
    service = MonitorService(config)
    app.state.service = service

    if config.nats_url:
        try:
            app.state.nats_client = await nats_connect(config.nats_url, connect_timeout=1)
        except Exception as exc:
            logger.warning(f"NATS chain event ingest disabled: {exc}")

    await service.start(app.state.nats_client)
    logger.info("Validator sentinel started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background tasks, then close the optional NATS connection."""
    if app.state.service is not None:
        await app.state.service.stop()
    if app.state.nats_client is not None:
        await app.state.nats_client.close()


def _service() -> MonitorService | None:
    return app.state.service


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Readiness probe: the consumer and alert engine must be running."""
    service = _service()
    telemetry = check_otlp_health()
    if service is None or not service.healthy:
        return JSONResponse(
            status_code=503, content={"status": "unavailable", "telemetry": telemetry}
        )
    return {"status": "ok", "telemetry": telemetry}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "validator-sentinel",
        "version": app.version,
        "status": "operational",
    }


@app.get("/snapshot")
async def snapshot(sample_size: int = 20):
    """Current metrics; long histories are truncated to ``sample_size``."""
    service = _service()
    if service is None:
        return JSONResponse(status_code=503, content={"detail": "service not started"})
    return service.snapshot().as_dict(sample_size=sample_size)


@app.get("/alerts/recent")
async def recent_alerts(limit: int = 50):
    """Most recent alerts from the live feed, newest first."""
    service = _service()
    if service is None:
        return JSONResponse(status_code=503, content={"detail": "service not started"})
    return [alert.as_dict() for alert in service.feed.recent(limit)]


@app.get("/alerts/state")
async def alert_state():
    """Current per-condition alert state and consecutive counters."""
    service = _service()
    if service is None:
        return JSONResponse(status_code=503, content={"detail": "service not started"})
    states = [
        {
            "type": alert_type.value,
            "chain": chain,
            "active": state.active,
            "last_severity": state.last_severity.value if state.last_severity else None,
            "last_sent_at": state.last_sent_at,
            "last_value": state.last_value,
        }
        for (alert_type, chain), state in service.engine.states().items()
    ]
    counters = [
        {"dimension": dimension, "chain": chain, "consecutive_missed": value}
        for (dimension, chain), value in service.engine.counters().items()
    ]
    return {"conditions": states, "counters": counters}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec
