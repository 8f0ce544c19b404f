# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import json
import os
import shutil
import time
from contextlib import suppress
from typing import Any

from loguru import logger

from groeimet_sandbox.errors import EngineUnavailableError, PackageInstallationError
from groeimet_sandbox.models import ErrorKind, ExecutionRequest, ExecutionResult
from groeimet_sandbox.models.protocol import FaultEvent, OutputEvent, ResultEvent, TranspiledEvent
from groeimet_sandbox.runtime import ExecutionRuntime, ProgressCallback
from groeimet_sandbox.runtimes.channel import (
    STREAM_LIMIT,
    ChannelOverflowError,
    OutputCollector,
    drain_stderr,
    read_event,
    reap,
)
from groeimet_sandbox.runtimes.node_host import NODE_HOST_SCRIPT
from groeimet_sandbox.runtimes.python import TIMEOUT_MESSAGE

# Headroom for Node startup on top of the in-host vm timeout.
HOST_GRACE_SECONDS = 0.5
MIN_HEAP_MB = 64


class _HostExited(Exception):
    pass


class JavaScriptRuntime(ExecutionRuntime):
    """
    Runs JavaScript in a Node.js `vm` context, one host process per request.
    """

    def __init__(
        self,
        node_executable: str = "node",
        typescript_module: str = "typescript",
        default_time_limit_ms: int = 30_000,
        default_memory_limit_mb: int = 256,
        max_output_bytes: int = 1_000_000,
    ):
        self.node_executable = node_executable
        self.typescript_module = typescript_module
        self.default_time_limit_ms = default_time_limit_ms
        self.default_memory_limit_mb = default_memory_limit_mb
        self.max_output_bytes = max_output_bytes
        self._node_path: str | None = None
        self._processes: set[asyncio.subprocess.Process] = set()

    async def start(self) -> None:
        """
        Resolve the Node.js executable.
        """
        if self._node_path is not None:
            return
        path = shutil.which(self.node_executable)
        if path is None:
            raise EngineUnavailableError(f"Node.js executable not found: {self.node_executable}")
        self._node_path = path
        logger.info(f"JavaScript runtime using {path}")

    async def restart(self) -> None:
        """
        Forget the resolved executable. Hosts of in-flight requests are left to finish.
        """
        self._node_path = None

    def _environment(self) -> dict[str, str]:
        env = {"SANDBOX_TYPESCRIPT_MODULE": self.typescript_module, "NODE_NO_WARNINGS": "1"}
        for key in ("PATH", "NODE_PATH", "HOME"):
            if key in os.environ:
                env[key] = os.environ[key]
        return env

    async def _spawn(self, payload: dict[str, Any], memory_limit_mb: int) -> asyncio.subprocess.Process:
        await self.start()
        assert self._node_path is not None
        try:
            process = await asyncio.create_subprocess_exec(
                self._node_path,
                f"--max-old-space-size={max(memory_limit_mb, MIN_HEAP_MB)}",
                "-e",
                NODE_HOST_SCRIPT,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise EngineUnavailableError(f"Failed to start Node.js: {e}") from e

        self._processes.add(process)
        assert process.stdin is not None
        with suppress(BrokenPipeError, ConnectionResetError):
            process.stdin.write(json.dumps(payload).encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
        return process

    async def _collect(self, process: asyncio.subprocess.Process, collector: OutputCollector | None) -> Any:
        """Read host events until a terminal one arrives."""
        assert process.stdout is not None
        while True:
            event = await read_event(process.stdout)
            if event is None:
                await process.wait()
                raise _HostExited()
            if isinstance(event, OutputEvent):
                if collector is not None:
                    collector.feed(event)
                continue
            if isinstance(event, (ResultEvent, TranspiledEvent, FaultEvent)):
                return event

    async def _release(self, process: asyncio.subprocess.Process, stderr_task: asyncio.Task[None]) -> None:
        await reap(process)
        with suppress(Exception):
            await stderr_task
        self._processes.discard(process)

    async def execute(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        """
        Run script and capture output.
        """
        if request.packages:
            raise PackageInstallationError("Packages are only supported for Python code")
        time_limit_ms = request.time_limit_ms or self.default_time_limit_ms
        return await self.run_source(
            request.source_code,
            time_limit_ms=time_limit_ms,
            memory_limit_mb=request.memory_limit_mb or self.default_memory_limit_mb,
            allow_network=request.allow_network,
            on_progress=on_progress,
        )

    async def run_source(
        self,
        source_code: str,
        time_limit_ms: float,
        memory_limit_mb: int,
        allow_network: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        collector = OutputCollector(self.max_output_bytes, on_progress)
        payload = {
            "mode": "execute",
            "code": source_code,
            "timeout_ms": max(int(time_limit_ms), 1),
            "allow_network": allow_network,
        }
        started = time.perf_counter()
        process = await self._spawn(payload, memory_limit_mb)
        host_stderr: list[str] = []
        stderr_task = asyncio.create_task(drain_stderr(process.stderr, "node", host_stderr))

        def partial(message: str, kind: ErrorKind) -> ExecutionResult:
            return ExecutionResult(
                output=collector.stdout.getvalue(),
                stderr=collector.stderr.getvalue(),
                error_message=message,
                error_kind=kind,
                execution_time_ms=(time.perf_counter() - started) * 1000,
            )

        try:
            event = await asyncio.wait_for(
                self._collect(process, collector), timeout=time_limit_ms / 1000 + HOST_GRACE_SECONDS
            )
        except asyncio.TimeoutError:
            logger.warning(f"Node.js execution exceeded {time_limit_ms}ms. Killing host {process.pid}.")
            return partial(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        except _HostExited:
            await self._release(process, stderr_task)
            detail = host_stderr[-1] if host_stderr else f"exit code {process.returncode}"
            return partial(f"Node.js host exited unexpectedly: {detail}", ErrorKind.RUNTIME)
        except ChannelOverflowError as e:
            logger.warning(f"Node.js host {process.pid} broke the event channel: {e}")
            return partial(f"Node.js host channel failed: {e}", ErrorKind.RUNTIME)
        finally:
            await self._release(process, stderr_task)

        if isinstance(event, FaultEvent):
            raise EngineUnavailableError(f"Node.js host fault: {event.error}")
        if not isinstance(event, ResultEvent):
            raise EngineUnavailableError(f"Unexpected reply from Node.js host: {event.type}")

        if event.timed_out:
            return partial(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        return ExecutionResult(
            output=collector.stdout.getvalue(),
            stderr=collector.stderr.getvalue(),
            error_message=event.error,
            error_kind=ErrorKind.RUNTIME if event.error else None,
            execution_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def transpile(self, source_code: str, timeout: float) -> TranspiledEvent:
        """Strip TypeScript types from source code.

        Raises:
            asyncio.TimeoutError: If transpilation takes longer than `timeout` seconds.
            EngineUnavailableError: If Node.js has no TypeScript support or the host fails.
        """
        process = await self._spawn({"mode": "transpile", "code": source_code}, self.default_memory_limit_mb)
        host_stderr: list[str] = []
        stderr_task = asyncio.create_task(drain_stderr(process.stderr, "node-transpile", host_stderr))
        try:
            event = await asyncio.wait_for(self._collect(process, None), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"TypeScript transpilation exceeded {timeout}s. Killing host {process.pid}.")
            raise
        except ChannelOverflowError as e:
            raise EngineUnavailableError(f"TypeScript transpiler channel failed: {e}") from e
        except _HostExited as e:
            await self._release(process, stderr_task)
            detail = host_stderr[-1] if host_stderr else f"exit code {process.returncode}"
            raise EngineUnavailableError(f"TypeScript transpiler exited unexpectedly: {detail}") from e
        finally:
            await self._release(process, stderr_task)

        if isinstance(event, FaultEvent):
            raise EngineUnavailableError(event.error)
        if not isinstance(event, TranspiledEvent):
            raise EngineUnavailableError(f"Unexpected reply from TypeScript transpiler: {event.type}")
        return event

    async def terminate(self) -> None:
        """
        Kill any host processes still running.
        """
        processes = list(self._processes)
        if processes:
            logger.info(f"Terminating {len(processes)} Node.js host process(es)")
        for process in processes:
            await reap(process)
        self._processes.clear()
