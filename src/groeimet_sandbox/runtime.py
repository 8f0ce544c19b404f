# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from abc import ABC, abstractmethod
from collections.abc import Callable

from groeimet_sandbox.models import ExecutionRequest, ExecutionResult, ProgressEvent

ProgressCallback = Callable[[ProgressEvent], None]


class ExecutionRuntime(ABC):
    """
    Abstract base class for language runtimes (Python, JavaScript, TypeScript).
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def start(self) -> None:
        """Prepare the runtime.

        Loads the interpreter ahead of the first request. Runtimes that spawn a
        fresh host per request only check that the host is available.

        Raises:
            EngineUnavailableError: If the interpreter cannot be loaded.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def execute(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        """Run the request's source and capture its output.

        Runtime faults and timeouts are returned as tagged results, not raised.

        Args:
            request: The validated execution request.
            on_progress: Called with every chunk of output as it is produced.

        Returns:
            ExecutionResult: Captured output, timing and the error kind, if any.

        Raises:
            PackageInstallationError: If a requested package cannot be loaded.
            EngineUnavailableError: If the interpreter is not available.
            EngineBusyError: If the runtime cannot accept more work.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def terminate(self) -> None:
        """Stop the runtime and release its processes."""
        pass  # pragma: no cover

    async def restart(self) -> None:
        """Discard runtime state so the next request starts afresh."""
        await self.terminate()
