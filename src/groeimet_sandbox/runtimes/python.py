# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import sys
import time
from contextlib import suppress
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from loguru import logger
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from groeimet_sandbox.errors import EngineBusyError, EngineUnavailableError, PackageInstallationError
from groeimet_sandbox.models import ErrorKind, ExecutionRequest, ExecutionResult
from groeimet_sandbox.models.protocol import (
    ExecuteCommand,
    FaultEvent,
    InstallCommand,
    OutputEvent,
    PackageErrorEvent,
    ReadyEvent,
    ResultEvent,
    ShutdownCommand,
    encode_command,
)
from groeimet_sandbox.runtime import ExecutionRuntime, ProgressCallback
from groeimet_sandbox.runtimes.channel import (
    STREAM_LIMIT,
    ChannelOverflowError,
    OutputCollector,
    drain_stderr,
    read_event,
    reap,
    scratch_directory,
)

TIMEOUT_MESSAGE = "Execution timeout exceeded"


def _worker_path() -> Path:
    return Path(__file__).with_name("python_worker.py")


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    EXECUTING = "executing"
    FAILED = "failed"


class _WorkerExited(Exception):
    pass


class PythonRuntime(ExecutionRuntime):
    """
    Runs Python source in a long-lived interpreter worker process.

    The worker is booted lazily on first use and reused across executions.
    Executions are serialised: one script runs at a time, at most
    `max_pending` callers may wait, and further callers are rejected with
    `EngineBusyError`. A timed-out or crashed worker is killed and replaced on
    the next request.
    """

    def __init__(
        self,
        python_executable: str | None = None,
        allowed_packages: set[str] | None = None,
        package_import_names: dict[str, str] | None = None,
        default_time_limit_ms: int = 30_000,
        default_memory_limit_mb: int = 256,
        startup_timeout: float = 30.0,
        max_pending: int = 4,
        max_output_bytes: int = 1_000_000,
    ):
        self.python_executable = python_executable or sys.executable
        self.allowed_packages = {canonicalize_name(p) for p in (allowed_packages or set())}
        self.package_import_names = {canonicalize_name(k): v for k, v in (package_import_names or {}).items()}
        self.default_time_limit_ms = default_time_limit_ms
        self.default_memory_limit_mb = default_memory_limit_mb
        self.startup_timeout = startup_timeout
        self.max_pending = max_pending
        self.max_output_bytes = max_output_bytes

        self.state = EngineState.UNINITIALIZED
        self.version: str | None = None
        self.last_error: str | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._boot_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._pending = 0
        self._loaded_packages: set[str] = set()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        """
        Boot the worker, or wait for a boot already in progress.
        """
        if self.state in (EngineState.READY, EngineState.EXECUTING):
            return
        if self.state is EngineState.FAILED:
            raise EngineUnavailableError(self.last_error or "Python engine failed to initialize")
        if self._boot_task is None:
            self._boot_task = asyncio.create_task(self._boot())
        await asyncio.shield(self._boot_task)

    async def _boot(self) -> None:
        self.state = EngineState.INITIALIZING
        logger.info(f"Starting Python worker with {self.python_executable}")
        try:
            process = await asyncio.create_subprocess_exec(
                self.python_executable,
                "-I",
                str(_worker_path()),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self._fail(f"Failed to start Python worker: {e}")
            raise EngineUnavailableError(self.last_error) from e

        self._process = process
        self._stderr_task = asyncio.create_task(drain_stderr(process.stderr, "python-worker"))

        assert process.stdout is not None
        try:
            event = await asyncio.wait_for(read_event(process.stdout), timeout=self.startup_timeout)
        except (asyncio.TimeoutError, ChannelOverflowError):
            event = None

        if not isinstance(event, ReadyEvent):
            await self._kill()
            self._fail("Python worker did not signal readiness")
            raise EngineUnavailableError(self.last_error)

        self.version = event.version
        self.state = EngineState.READY
        logger.info(f"Python worker ready (Python {event.version}, pid {process.pid})")

    def _fail(self, message: str) -> None:
        self.state = EngineState.FAILED
        self.last_error = message
        logger.error(message)

    async def restart(self) -> None:
        """
        Discard the current worker, including a failed one, so the next request boots a new one.
        """
        async with self._lock:
            await self._recycle()
            self.last_error = None
        logger.info("Python engine reset")

    async def _recycle(self) -> None:
        await self._kill()
        self.state = EngineState.UNINITIALIZED
        self._boot_task = None

    async def _kill(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            await reap(process)
        if self._stderr_task is not None:
            with suppress(Exception):
                await self._stderr_task
            self._stderr_task = None
        self._loaded_packages.clear()

    def resolve_packages(self, packages: list[str]) -> list[str]:
        """Map requested distributions to the module names the worker imports.

        Raises:
            PackageInstallationError: If a requirement is malformed or not allowed.
        """
        modules: list[str] = []
        for spec in packages:
            try:
                name = canonicalize_name(Requirement(spec).name)
            except InvalidRequirement as e:
                raise PackageInstallationError(f"Invalid package requirement: {spec}") from e
            if name not in self.allowed_packages:
                raise PackageInstallationError(f"Package {spec} is not in the allowed list.")
            modules.append(self.package_import_names.get(name, name.replace("-", "_")))
        return list(dict.fromkeys(modules))

    async def execute(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        """
        Run script and capture output.
        """
        modules = self.resolve_packages(request.packages)

        if self._pending >= self.max_pending:
            raise EngineBusyError(f"Python engine is busy ({self._pending} executions pending)")

        self._pending += 1
        try:
            async with self._lock:
                await self.start()
                return await self._execute_locked(request, modules, on_progress)
        finally:
            self._pending -= 1

    async def _execute_locked(
        self, request: ExecutionRequest, modules: list[str], on_progress: ProgressCallback | None
    ) -> ExecutionResult:
        time_limit_ms = request.time_limit_ms or self.default_time_limit_ms
        collector = OutputCollector(self.max_output_bytes, on_progress)
        execution_id = uuid4().hex

        self.state = EngineState.EXECUTING
        try:
            async with scratch_directory(request.auxiliary_files) as cwd:
                command = ExecuteCommand(
                    id=execution_id,
                    code=request.source_code,
                    cwd=str(cwd),
                    allow_network=request.allow_network,
                    memory_limit_mb=request.memory_limit_mb or self.default_memory_limit_mb,
                )
                started = time.perf_counter()
                try:
                    event = await asyncio.wait_for(
                        self._converse(command, modules, collector), timeout=time_limit_ms / 1000
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Python execution {execution_id} exceeded {time_limit_ms}ms. Recycling worker {self.pid}."
                    )
                    await self._recycle()
                    return ExecutionResult(
                        output=collector.stdout.getvalue(),
                        stderr=collector.stderr.getvalue(),
                        error_message=TIMEOUT_MESSAGE,
                        error_kind=ErrorKind.TIMEOUT,
                        execution_time_ms=(time.perf_counter() - started) * 1000,
                    )
                except _WorkerExited as e:
                    returncode = self._process.returncode if self._process else None
                    await self._recycle()
                    return ExecutionResult(
                        output=collector.stdout.getvalue(),
                        stderr=collector.stderr.getvalue(),
                        error_message=str(e) or f"Python worker exited unexpectedly (exit code {returncode})",
                        error_kind=ErrorKind.RUNTIME,
                        execution_time_ms=(time.perf_counter() - started) * 1000,
                    )
                elapsed_ms = (time.perf_counter() - started) * 1000
        finally:
            if self.state is EngineState.EXECUTING:
                self.state = EngineState.READY

        if event.recycle:
            logger.warning(f"Python execution {execution_id} left threads running. Recycling worker {self.pid}.")
            await self._recycle()

        error = event.error or None
        return ExecutionResult(
            output=collector.stdout.getvalue(),
            stderr=collector.stderr.getvalue(),
            error_message=error,
            error_kind=ErrorKind.RUNTIME if error else None,
            execution_time_ms=elapsed_ms,
            memory_used_mb=event.memory_used_mb,
            captured_variables=event.variables if not error else None,
        )

    async def _converse(self, command: ExecuteCommand, modules: list[str], collector: OutputCollector) -> ResultEvent:
        missing = [m for m in modules if m not in self._loaded_packages]
        if missing:
            await self._send(InstallCommand(id=command.id, packages=missing))
            reply = await self._next_reply(command.id, collector)
            if isinstance(reply, PackageErrorEvent):
                raise PackageInstallationError(reply.error)
            self._loaded_packages.update(missing)

        await self._send(command)
        reply = await self._next_reply(command.id, collector)
        if not isinstance(reply, ResultEvent):
            raise EngineUnavailableError(f"Unexpected reply from Python worker: {reply.type}")
        return reply

    async def _send(self, command: ExecuteCommand | InstallCommand | ShutdownCommand) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise EngineUnavailableError("Python worker is not running")
        try:
            process.stdin.write(encode_command(command))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise _WorkerExited() from e

    async def _next_reply(self, command_id: str, collector: OutputCollector) -> Any:
        """Read events for `command_id` until one that is not output arrives."""
        process = self._process
        if process is None or process.stdout is None:
            raise EngineUnavailableError("Python worker is not running")
        while True:
            try:
                event = await read_event(process.stdout)
            except ChannelOverflowError as e:
                raise _WorkerExited(f"Python worker channel failed: {e}") from e
            if event is None:
                await process.wait()
                raise _WorkerExited()
            event_id = getattr(event, "id", None)
            if event_id is not None and event_id != command_id:
                logger.warning(f"Discarding {event.type} event for stale execution {event_id}")
                continue
            if isinstance(event, OutputEvent):
                collector.feed(event)
                continue
            if isinstance(event, FaultEvent):
                raise EngineUnavailableError(f"Python worker fault: {event.error}")
            return event

    async def terminate(self) -> None:
        """
        Stop the worker process.
        """
        process = self._process
        if process is None:
            logger.debug("Attempted to terminate Python engine with no running worker")
        else:
            logger.info(f"Terminating Python worker (pid {process.pid})")
            if process.stdin is not None and process.returncode is None:
                with suppress(BrokenPipeError, ConnectionResetError):
                    process.stdin.write(encode_command(ShutdownCommand()))
                    await process.stdin.drain()
                    process.stdin.close()
                with suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(process.wait(), timeout=2.0)
        await self._recycle()
