"""FastAPI server for the task orchestrator."""

from typing import Dict, Any, Optional, List
from contextlib import asynccontextmanager
import asyncio
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.responses import Response

from .config import PriorityLevel, settings
from .exceptions import (
    OrchestrationError,
    CostLimitExceeded,
    AdapterNotFound,
    AdapterError,
    InvalidResponse,
)
from .orchestrator import TaskOrchestrator, ExecutionRequest
from .utils.logging import get_logger, configure_logging

logger = get_logger(__name__)

METRICS_REPORT_INTERVAL_SECONDS = 300


class TaskRequest(BaseModel):
    """API request model."""

    description: str = Field(..., min_length=1, description="The task to execute")
    priority: Optional[PriorityLevel] = Field(default=None, description="low, balanced, high or critical")
    max_cost: Optional[float] = Field(default=None, gt=0, description="Per-task cost ceiling in USD")
    thinking: Optional[bool] = Field(default=None, description="Force extended reasoning on or off")
    user_rating: Optional[float] = Field(default=None, ge=0, le=5, description="Satisfaction score 0-5")


class BaselineRequest(BaseModel):
    window_minutes: Optional[float] = Field(default=None, gt=0)


def _error_status(exc: OrchestrationError) -> int:
    if isinstance(exc, CostLimitExceeded):
        return 402
    if isinstance(exc, AdapterNotFound):
        return 503
    if isinstance(exc, (AdapterError, InvalidResponse)):
        return 502
    return 500


async def metrics_reporter(orchestrator: TaskOrchestrator):
    """Periodic metrics reporting."""
    while True:
        await asyncio.sleep(METRICS_REPORT_INTERVAL_SECONDS)
        metrics = orchestrator.get_performance_metrics()
        logger.info(
            "metrics_report",
            total_tasks=metrics.total_tasks,
            success_rate=metrics.success_rate,
            avg_latency_ms=metrics.avg_latency_ms,
            total_cost=metrics.total_cost,
        )


def create_app(orchestrator: Optional[TaskOrchestrator] = None) -> FastAPI:
    """Build the API; without an orchestrator one is created from settings on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_orchestrator = app.state.orchestrator is None
        if owns_orchestrator:
            configure_logging(settings.monitoring.log_level, settings.monitoring.log_format)
            app.state.orchestrator = TaskOrchestrator.from_settings(settings)
            await app.state.orchestrator.validate_backends()
        logger.info("Starting task orchestrator API")

        reporter = asyncio.create_task(metrics_reporter(app.state.orchestrator))
        yield

        logger.info("Shutting down task orchestrator API")
        reporter.cancel()
        if owns_orchestrator:
            await app.state.orchestrator.aclose()

    app = FastAPI(
        title="Swarm Orchestrator API",
        description="Cost-aware task orchestration across code-generation backends",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    def get_orchestrator() -> TaskOrchestrator:
        if app.state.orchestrator is None:
            raise HTTPException(status_code=503, detail="Service not initialized")
        return app.state.orchestrator

    @app.exception_handler(OrchestrationError)
    async def orchestration_error_handler(request: Request, exc: OrchestrationError):
        body = exc.to_dict()
        if exc.result is not None:
            body["result"] = jsonable_encoder(exc.result)
        return JSONResponse(status_code=_error_status(exc), content=body)

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        orch = get_orchestrator()
        alerts = orch.monitor.check_alerts()
        return {
            "status": "warning" if alerts else "healthy",
            "session_id": orch.session_id,
            "adapters": orch.registry.backends,
            "alerts": jsonable_encoder(alerts),
        }

    @app.get("/metrics", response_class=Response)
    async def prometheus_metrics():
        """Prometheus metrics endpoint."""
        orch = get_orchestrator()
        if not orch.monitor.enable_prometheus:
            raise HTTPException(status_code=503, detail="Metrics not available")
        return Response(content=orch.monitor.get_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/v1/tasks")
    async def execute_task(request: TaskRequest) -> Dict[str, Any]:
        """Execute a task on the selected backend."""
        orch = get_orchestrator()
        logger.info("task_received", description=request.description[:100], priority=request.priority)

        result = await orch.execute(ExecutionRequest(
            description=request.description,
            priority=request.priority,
            max_cost=request.max_cost,
            thinking=request.thinking,
            user_rating=request.user_rating,
        ))
        return jsonable_encoder(result)

    @app.post("/v1/tasks/batch")
    async def execute_batch(requests: List[TaskRequest]) -> List[Dict[str, Any]]:
        """Execute several tasks concurrently; failures are reported per item."""
        orch = get_orchestrator()

        responses = await asyncio.gather(
            *[
                orch.execute(ExecutionRequest(
                    description=req.description,
                    priority=req.priority,
                    max_cost=req.max_cost,
                    thinking=req.thinking,
                    user_rating=req.user_rating,
                ))
                for req in requests
            ],
            return_exceptions=True,
        )

        final_responses = []
        for response in responses:
            if isinstance(response, OrchestrationError):
                item = response.to_dict()
                if response.result is not None:
                    item["result"] = jsonable_encoder(response.result)
                final_responses.append(item)
            elif isinstance(response, BaseException):
                raise response
            else:
                final_responses.append(jsonable_encoder(response))
        return final_responses

    @app.get("/v1/metrics")
    async def performance_metrics(window_minutes: Optional[float] = None) -> Dict[str, Any]:
        orch = get_orchestrator()
        window = None
        if window_minutes is not None:
            if window_minutes <= 0:
                raise HTTPException(status_code=422, detail="window_minutes must be positive")
            window = timedelta(minutes=window_minutes)
        return jsonable_encoder(orch.get_performance_metrics(window))

    @app.get("/v1/report")
    async def performance_report() -> Dict[str, Any]:
        return jsonable_encoder(get_orchestrator().get_performance_report())

    @app.get("/v1/export")
    async def export_metrics() -> Response:
        return Response(content=get_orchestrator().export_metrics(), media_type="application/json")

    @app.post("/v1/baseline")
    async def set_baseline(request: Optional[BaselineRequest] = None) -> Dict[str, Any]:
        orch = get_orchestrator()
        baseline = None
        if request and request.window_minutes:
            baseline = orch.get_performance_metrics(timedelta(minutes=request.window_minutes))
        pinned = orch.set_performance_baseline(baseline)
        if pinned is None:
            raise HTTPException(status_code=409, detail="No completed tasks to use as a baseline")
        return jsonable_encoder(pinned)

    @app.get("/v1/stats")
    async def session_stats() -> Dict[str, Any]:
        orch = get_orchestrator()
        return {
            "session": orch.get_stats().to_dict(),
            "routing": orch.selector.get_routing_stats(),
            "backend_performance": orch.monitor.get_backend_performance(),
        }

    return app


def run_server():
    """Run the API with uvicorn."""
    import uvicorn

    configure_logging(settings.monitoring.log_level, settings.monitoring.log_format)
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )
