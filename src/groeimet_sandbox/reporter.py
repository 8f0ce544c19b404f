# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from typing import Any

from groeimet_sandbox.errors import InvalidRequestError, SandboxError
from groeimet_sandbox.models import ExecutionReport, ExecutionResult


class ResultReporter:
    """Normalises engine results and rejections into response bodies."""

    def report(self, result: ExecutionResult) -> ExecutionReport:
        return ExecutionReport(
            success=result.completed,
            output=result.output,
            stderr=result.stderr,
            error=result.error_message,
            error_kind=result.error_kind,
            execution_time_ms=result.execution_time_ms,
            memory_used_mb=result.memory_used_mb,
            variables=result.captured_variables,
        )

    def rejection(self, error: SandboxError) -> dict[str, Any]:
        """Body for a request that was refused or failed outside the engine."""
        if type(error) is SandboxError or error.kind == SandboxError.kind:
            return {"error": "Internal server error", "errorKind": SandboxError.kind}
        body: dict[str, Any] = {"error": str(error), "errorKind": error.kind}
        if isinstance(error, InvalidRequestError) and error.details:
            body["details"] = error.details
        return body
