# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""HTTP surface: `POST /execute` and its CORS preflight."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger

from groeimet_sandbox.config import SandboxConfig
from groeimet_sandbox.errors import SandboxError
from groeimet_sandbox.factory import SandboxFactory
from groeimet_sandbox.service import ExecutionService


def cors_headers(config: SandboxConfig) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": config.cors_allow_origin,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def create_app(service: ExecutionService | None = None, config: SandboxConfig | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: A pre-built execution service. Built from `config` when omitted.
        config: Service configuration (default: read from the environment).
    """
    config = config or SandboxConfig()
    service = service or SandboxFactory.get_service(config)
    headers = cors_headers(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            logger.info("Shutting down execution service")
            await service.shutdown()

    app = FastAPI(title="GroeimetAI Code Execution", lifespan=lifespan)
    app.state.service = service
    app.state.config = config

    def rejection(error: SandboxError) -> JSONResponse:
        body = service.reporter.rejection(error)
        return JSONResponse(status_code=error.status_code, content=body, headers=headers)

    @app.post("/execute")
    async def execute(request: Request) -> JSONResponse:
        try:
            identity = await service.authenticate(request.headers.get("Authorization"))
            payload: Any
            try:
                payload = await request.json()
            except ValueError:
                payload = None
            report = await service.execute(identity, payload)
        except SandboxError as e:
            logger.info(f"Request rejected ({e.kind}): {e}")
            return rejection(e)
        except Exception:
            logger.exception("Unexpected error while executing code")
            return JSONResponse(status_code=500, content={"error": "Internal server error"}, headers=headers)

        return JSONResponse(
            content={"success": report.success, "result": report.model_dump(mode="json", by_alias=True)},
            headers=headers,
        )

    @app.options("/execute")
    async def preflight() -> Response:
        return Response(status_code=200, headers=headers)

    return app


def run() -> None:  # pragma: no cover
    """Entry point for the HTTP server."""
    import groeimet_sandbox.utils.logger  # noqa: F401

    config = SandboxConfig()
    uvicorn.run(create_app(config=config), host=config.host, port=config.port)


if __name__ == "__main__":  # pragma: no cover
    run()
