# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from groeimet_sandbox.config import SandboxConfig
from groeimet_sandbox.factory import SandboxFactory
from groeimet_sandbox.models import Identity, Language

config = SandboxConfig()

# Initialize the execution pipeline
service = SandboxFactory.get_service(config)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Shut the interpreters down when the server stops."""
    try:
        yield
    finally:
        await service.shutdown()


# Initialize MCP Server
mcp = FastMCP("groeimet-sandbox", lifespan=lifespan)


@mcp.tool()  # type: ignore[misc]
async def execute_code(
    language: Language,
    code: str,
    time_limit_ms: int | None = None,
    memory_limit_mb: int | None = None,
    packages: list[str] | None = None,
    files: dict[str, str] | None = None,
    allow_network: bool = False,
) -> list[TextContent]:
    """
    Execute Python, JavaScript or TypeScript code in the sandbox.
    Python code may read the given auxiliary files from its working directory.
    Returns stdout, stderr, any error and the execution time.
    """
    payload: dict[str, Any] = {
        "language": language,
        "code": code,
        "timeLimit": time_limit_ms,
        "memoryLimit": memory_limit_mb,
        "packages": packages,
        "files": files,
        "allowNetwork": allow_network,
    }
    try:
        report = await service.execute(Identity(sub=config.mcp_identity), payload)
    except Exception as e:
        return [TextContent(type="text", text=f"Error executing code: {e!s}")]

    output: list[TextContent] = []

    # Stdout
    if report.output:
        output.append(TextContent(type="text", text=f"STDOUT:\n{report.output}"))

    # Stderr
    if report.stderr:
        output.append(TextContent(type="text", text=f"STDERR:\n{report.stderr}"))

    # Error
    if report.error_kind is not None:
        output.append(TextContent(type="text", text=f"Error ({report.error_kind.value}): {report.error}"))

    # Duration
    output.append(TextContent(type="text", text=f"Duration: {report.execution_time_ms:.1f}ms"))

    return output


def main() -> None:
    """Entry point for the MCP server."""
    import groeimet_sandbox.utils.logger  # noqa: F401

    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
