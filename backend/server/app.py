"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Hold shared dependencies on app.state (config, factories)
- Register routes and, optionally, the static frontend
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import AppConfig
from observability.logger import configure_logging

from server.routes import register_routes

if TYPE_CHECKING:
    from orchestrator.runtime_context import CaptureFactory
    from session.gateway import ProviderFactory


def create_app(
    config: AppConfig | None = None,
    *,
    provider_factory: ProviderFactory | None = None,
    capture_factory: CaptureFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations and fake connections
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    configure_logging(enabled=config.enable_json_logs)

    # The default provider needs a key; injected factories may not
    if provider_factory is None and not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")

    app = FastAPI(title="Transcription Relay")

    app.state.config = config
    app.state.provider_factory = provider_factory
    app.state.capture_factory = capture_factory

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    # Static frontend last so it never shadows /health or /ws
    if config.frontend_dir:
        app.mount(
            "/",
            StaticFiles(directory=config.frontend_dir, html=True),
            name="frontend",
        )

    return app
