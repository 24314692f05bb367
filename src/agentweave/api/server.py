"""FastAPI application exposing the runtime's event stream."""

from fastapi import FastAPI

from agentweave import __version__
from agentweave.api.routes.events import create_events_router
from agentweave.application.runtime import ExecutorRuntime
from agentweave.core.bus.streaming import StreamingEventBus


def create_app(runtime: ExecutorRuntime) -> FastAPI:
    """
    Build the HTTP app for a runtime.

    Raises:
        TypeError: If the runtime's bus does not support streaming
    """
    if not isinstance(runtime.event_bus, StreamingEventBus):
        raise TypeError("create_app requires a runtime with a StreamingEventBus")

    app = FastAPI(
        title="agentweave",
        description="Event stream for agent executors and workflows",
        version=__version__,
    )
    app.include_router(create_events_router(runtime.event_bus), prefix="/api/v1", tags=["events"])

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__, **runtime.statistics()}

    return app
