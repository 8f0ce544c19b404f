# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
from collections.abc import Mapping

from loguru import logger

from groeimet_sandbox.errors import EngineFault, EngineUnavailableError
from groeimet_sandbox.models import ExecutionRequest, ExecutionResult, Language
from groeimet_sandbox.runtime import ExecutionRuntime, ProgressCallback


class LanguageDispatcher:
    """
    Routes execution requests to the runtime registered for their language.

    Engine faults are turned into tagged results here so they never reach the
    transport layer. An unavailable engine is restarted in the background.
    """

    def __init__(self, runtimes: Mapping[Language, ExecutionRuntime]):
        self.runtimes = dict(runtimes)
        self._restarts: set[asyncio.Task[None]] = set()

    def runtime_for(self, language: Language) -> ExecutionRuntime:
        try:
            return self.runtimes[language]
        except KeyError:
            raise EngineUnavailableError(f"No runtime registered for {language}") from None

    async def dispatch(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        try:
            runtime = self.runtime_for(request.language)
            return await runtime.execute(request, on_progress)
        except EngineFault as e:
            logger.warning(f"{request.language} engine fault ({e.error_kind.value}): {e}")
            if isinstance(e, EngineUnavailableError) and request.language in self.runtimes:
                self._schedule_restart(self.runtimes[request.language])
            return ExecutionResult(error_message=str(e), error_kind=e.error_kind)

    def _schedule_restart(self, runtime: ExecutionRuntime) -> None:
        task = asyncio.create_task(self._restart(runtime))
        self._restarts.add(task)
        task.add_done_callback(self._restarts.discard)

    async def _restart(self, runtime: ExecutionRuntime) -> None:
        try:
            await runtime.restart()
        except Exception as e:
            logger.error(f"Failed to restart {type(runtime).__name__}: {e}")

    async def start(self) -> None:
        """Warm up every runtime. A runtime that cannot start is reset for lazy startup."""
        for language, runtime in self.runtimes.items():
            try:
                await runtime.start()
            except EngineUnavailableError as e:
                logger.warning(f"{language} runtime unavailable at startup: {e}")
                self._schedule_restart(runtime)

    async def shutdown(self) -> None:
        for task in list(self._restarts):
            task.cancel()
        for language, runtime in self.runtimes.items():
            try:
                await runtime.terminate()
            except Exception as e:
                logger.error(f"Error terminating {language} runtime: {e}")
