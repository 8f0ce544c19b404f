# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import time

from loguru import logger

from groeimet_sandbox.errors import PackageInstallationError
from groeimet_sandbox.models import ErrorKind, ExecutionRequest, ExecutionResult
from groeimet_sandbox.runtime import ProgressCallback
from groeimet_sandbox.runtimes.javascript import JavaScriptRuntime
from groeimet_sandbox.runtimes.python import TIMEOUT_MESSAGE


class TypeScriptRuntime(JavaScriptRuntime):
    """
    Transpiles TypeScript to JavaScript, then runs it like JavaScript.
    Types are stripped, not checked: only syntax errors are compile errors.
    """

    def __init__(
        self,
        node_executable: str = "node",
        typescript_module: str = "typescript",
        default_time_limit_ms: int = 30_000,
        default_memory_limit_mb: int = 256,
        max_output_bytes: int = 1_000_000,
        transpile_timeout: float = 10.0,
    ):
        super().__init__(
            node_executable=node_executable,
            typescript_module=typescript_module,
            default_time_limit_ms=default_time_limit_ms,
            default_memory_limit_mb=default_memory_limit_mb,
            max_output_bytes=max_output_bytes,
        )
        self.transpile_timeout = transpile_timeout

    async def execute(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        if request.packages:
            raise PackageInstallationError("Packages are only supported for Python code")
        time_limit_ms = request.time_limit_ms or self.default_time_limit_ms

        started = time.perf_counter()
        try:
            transpiled = await self.transpile(request.source_code, min(self.transpile_timeout, time_limit_ms / 1000))
        except asyncio.TimeoutError:
            return ExecutionResult(
                error_message=TIMEOUT_MESSAGE,
                error_kind=ErrorKind.TIMEOUT,
                execution_time_ms=(time.perf_counter() - started) * 1000,
            )
        transpile_ms = (time.perf_counter() - started) * 1000

        if transpiled.diagnostics:
            logger.debug(f"TypeScript compilation failed with {len(transpiled.diagnostics)} diagnostic(s)")
            return ExecutionResult(
                error_message="\n".join(transpiled.diagnostics),
                error_kind=ErrorKind.COMPILE,
                execution_time_ms=transpile_ms,
            )

        remaining_ms = time_limit_ms - transpile_ms
        if remaining_ms <= 0:
            return ExecutionResult(
                error_message=TIMEOUT_MESSAGE,
                error_kind=ErrorKind.TIMEOUT,
                execution_time_ms=transpile_ms,
            )

        result = await self.run_source(
            transpiled.code,
            time_limit_ms=remaining_ms,
            memory_limit_mb=request.memory_limit_mb or self.default_memory_limit_mb,
            allow_network=request.allow_network,
            on_progress=on_progress,
        )
        return result.model_copy(update={"execution_time_ms": result.execution_time_ms + transpile_ms})
