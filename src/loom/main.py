"""
Loom — streaming chat turns over many LLM providers.

Run: uv run uvicorn loom.main:app --host 0.0.0.0 --port 8000
 or: loom-server
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from loom import __version__
from loom.core.config import config
from loom.core.logging import setup_logging
from loom.core.metrics import metrics
from loom.http.chat import create_chat_router
from loom.llm.core import TurnOrchestrator
from loom.providers.registry import available_providers
from loom.session.turns import TurnManager

logger = logging.getLogger("loom")


def create_app(
    orchestrator: TurnOrchestrator | None = None,
    manager: TurnManager | None = None,
) -> FastAPI:
    """Build the FastAPI app around one orchestrator."""
    orchestrator = orchestrator or TurnOrchestrator()
    manager = manager or TurnManager(orchestrator)

    app = FastAPI(title="Loom", version=__version__)
    app.include_router(create_chat_router(orchestrator, manager))

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "version": __version__,
                "providers": available_providers(),
                "tools": orchestrator.registry.tool_names(),
            }
        )

    @app.get("/metrics")
    async def get_metrics() -> JSONResponse:
        return JSONResponse(metrics.snapshot())

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await manager.shutdown()

    return app


setup_logging()
app = create_app()


def main() -> None:
    import uvicorn

    logger.info(f"Loom {__version__} listening on {config.server.host}:{config.server.port}")
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
