# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from contextlib import AbstractContextManager
from functools import partial
from typing import Any

from anyio.from_thread import BlockingPortal, start_blocking_portal

from groeimet_sandbox.config import SandboxConfig
from groeimet_sandbox.factory import SandboxFactory
from groeimet_sandbox.models import ExecutionReport, Identity, Language
from groeimet_sandbox.runtime import ProgressCallback
from groeimet_sandbox.service import ExecutionService


class SandboxAsync:
    """Async-native Sandbox Service (The Core).

    Runs code through the same pipeline as the HTTP surface: rate limiting,
    validation and the safety filter all apply.
    """

    def __init__(
        self,
        config: SandboxConfig | None = None,
        service: ExecutionService | None = None,
        identity: Identity | None = None,
    ):
        """Initializes the SandboxAsync service.

        Args:
            config: Configuration for the sandbox.
            service: Optional pre-built execution service.
            identity: The identity requests run as (default: the configured MCP identity).
        """
        self.config = config or SandboxConfig()
        self.service = service or SandboxFactory.get_service(self.config)
        self.identity = identity or Identity(sub=self.config.mcp_identity)

    async def __aenter__(self) -> "SandboxAsync":
        """Starts the interpreters."""
        await self.service.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Stops the interpreters and releases their processes."""
        await self.service.shutdown()

    async def execute(
        self,
        code: str,
        language: Language = "python",
        time_limit_ms: int | None = None,
        memory_limit_mb: int | None = None,
        packages: list[str] | None = None,
        files: dict[str, str] | None = None,
        allow_network: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionReport:
        """Executes code in the sandbox.

        Args:
            code: The source code to execute.
            language: The programming language (default: 'python').
            time_limit_ms: Wall-clock limit in milliseconds.
            memory_limit_mb: Memory limit in megabytes.
            packages: Packages to load before running (Python only).
            files: Auxiliary files to place in the working directory (Python only).
            allow_network: Whether the code may use the network.
            on_progress: Called with each chunk of output as it is produced.

        Returns:
            ExecutionReport: The normalised result of the execution.
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
        return await self.service.execute(self.identity, payload, on_progress)


class Sandbox:
    """Sync Facade for SandboxAsync (The Facade).

    The interpreters are bound to an event loop, so the facade keeps one
    running in a blocking portal for the lifetime of the context.
    """

    def __init__(
        self,
        config: SandboxConfig | None = None,
        service: ExecutionService | None = None,
        identity: Identity | None = None,
    ):
        self._async = SandboxAsync(config, service, identity)
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    def __enter__(self) -> "Sandbox":
        """Context entry point."""
        self._portal_cm = start_blocking_portal()
        self._portal = self._portal_cm.__enter__()
        try:
            self._portal.call(self._async.__aenter__)
        except BaseException:
            self._close_portal()
            raise
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context exit point."""
        try:
            if self._portal is not None:
                self._portal.call(self._async.__aexit__, exc_type, exc_val, exc_tb)
        finally:
            self._close_portal()

    def _close_portal(self) -> None:
        portal_cm, self._portal_cm, self._portal = self._portal_cm, None, None
        if portal_cm is not None:
            portal_cm.__exit__(None, None, None)

    def execute(
        self,
        code: str,
        language: Language = "python",
        **options: Any,
    ) -> ExecutionReport:
        """Executes code in the sandbox synchronously.

        Accepts the same keyword options as `SandboxAsync.execute`.

        Raises:
            RuntimeError: If called outside a `with` block.
        """
        if self._portal is None:
            raise RuntimeError("Sandbox must be used as a context manager")
        return self._portal.call(partial(self._async.execute, code, language, **options))
