# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""Interpreter host process for the Python runtime.

Launched by `PythonRuntime` as `python -I python_worker.py`. Commands arrive as
JSON lines on stdin; events leave as JSON lines on a private duplicate of the
original stdout. File descriptor 1 itself is pointed at /dev/null so that stray
writes cannot corrupt the channel.

Standard library only: the worker must boot quickly and must not drag the
service's dependencies into the user's namespace.
"""

import _thread
import builtins
import contextlib
import importlib
import importlib.abc
import io
import json
import os
import platform
import sys
import threading
import time
import traceback
import types
from typing import Any

try:
    import resource
except ImportError:  # pragma: no cover - platform specific
    resource = None  # type: ignore[assignment]

PRELOADED_MODULES = ("json", "math", "random", "datetime", "re", "collections", "itertools", "functools")
NETWORK_MODULES = frozenset({"socket", "_socket", "ssl", "_ssl"})
MAX_VARIABLE_CHARS = 10_000
# Largest `data` payload of a single output event.
OUTPUT_CHUNK_CHARS = 64 * 1024

# Bound early: user code shares the preloaded json module and may rebind its attributes.
_dumps = json.dumps
# Counts every thread started through _thread, including those threading never sees.
_thread_count = _thread._count


class Channel:
    def __init__(self, stream: io.TextIOBase):
        self._stream = stream
        # User threads may write while the main thread reports a result.
        self._lock = threading.Lock()

    def send(self, message: dict[str, Any]) -> None:
        line = _dumps(message, default=str) + "\n"
        with self._lock:
            self._stream.write(line)
            self._stream.flush()


def open_channel() -> Channel:
    channel_fd = os.dup(1)
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, 1)
    os.close(devnull)
    return Channel(os.fdopen(channel_fd, "w", encoding="utf-8"))


class OutputCapture(io.TextIOBase):
    """Forwards every write of the user's program as an output event."""

    def __init__(self, channel: Channel, stream: str, execution_id: str | None):
        super().__init__()
        self._channel = channel
        self._stream = stream
        self._execution_id = execution_id

    @property
    def encoding(self) -> str:
        return "utf-8"

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        for start in range(0, len(text), OUTPUT_CHUNK_CHARS):
            chunk = text[start : start + OUTPUT_CHUNK_CHARS]
            self._channel.send({"type": self._stream, "id": self._execution_id, "data": chunk})
        return len(text)


class NetworkBlocker(importlib.abc.MetaPathFinder):
    def find_spec(self, fullname: str, path: Any = None, target: Any = None) -> None:
        if fullname.split(".")[0] in NETWORK_MODULES:
            raise ImportError(f"Import of {fullname!r} is blocked: network access is disabled")
        return None


@contextlib.contextmanager
def network_guard(allow_network: bool):
    hidden: dict[str, types.ModuleType] = {}
    blocker = None
    if not allow_network:
        for name in list(sys.modules):
            if name.split(".")[0] in NETWORK_MODULES:
                hidden[name] = sys.modules.pop(name)
        blocker = NetworkBlocker()
        sys.meta_path.insert(0, blocker)
    try:
        yield
    finally:
        if blocker is not None:
            sys.meta_path.remove(blocker)
            sys.modules.update(hidden)


def _address_space_bytes() -> int | None:
    try:
        with open("/proc/self/statm", encoding="ascii") as statm:
            pages = int(statm.read().split()[0])
        return pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        return None


@contextlib.contextmanager
def memory_limit(limit_mb: int | None):
    """Cap the address space at its current size plus `limit_mb` for the block."""
    previous = None
    if resource is not None and limit_mb:
        baseline = _address_space_bytes()
        if baseline is not None:
            soft, hard = resource.getrlimit(resource.RLIMIT_AS)
            target = baseline + limit_mb * 1024 * 1024
            if hard != resource.RLIM_INFINITY:
                target = min(target, hard)
            try:
                resource.setrlimit(resource.RLIMIT_AS, (target, hard))
                previous = (soft, hard)
            except (ValueError, OSError):
                previous = None
    try:
        yield
    finally:
        if previous is not None:
            resource.setrlimit(resource.RLIMIT_AS, previous)


@contextlib.contextmanager
def working_directory(path: str | None):
    if not path:
        yield
        return
    original = os.getcwd()
    os.chdir(path)
    try:
        yield
    finally:
        os.chdir(original)


@contextlib.contextmanager
def empty_stdin():
    original = sys.stdin
    sys.stdin = io.StringIO("")
    try:
        yield
    finally:
        sys.stdin = original


def peak_memory_mb() -> float | None:
    if resource is None:
        return None
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is in bytes on macOS and kilobytes elsewhere
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


def format_user_exception(exc: BaseException) -> str:
    tb = exc.__traceback__
    # Skip the worker's own frames so the trace starts in user code.
    while tb is not None and tb.tb_frame.f_code.co_filename == __file__:
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(exc), exc, tb))


def _short_repr(value: Any) -> str:
    try:
        text = repr(value)
    except Exception:
        text = f"<{type(value).__name__}>"
    return text[:MAX_VARIABLE_CHARS]


def _jsonable(value: Any) -> Any:
    try:
        encoded = _dumps(value, allow_nan=False)
    except (TypeError, ValueError, RecursionError):
        return _short_repr(value)
    if len(encoded) > MAX_VARIABLE_CHARS:
        return _short_repr(value)
    return value


def capture_variables(namespace: dict[str, Any], baseline: set[str]) -> dict[str, Any]:
    captured: dict[str, Any] = {}
    for name, value in namespace.items():
        if name in baseline or name.startswith("_"):
            continue
        if isinstance(value, types.ModuleType) or callable(value):
            continue
        captured[name] = _jsonable(value)
    return captured


class InterpreterHost:
    """Executes commands against one long-lived interpreter."""

    def __init__(self, channel: Channel):
        self.channel = channel
        self.packages: dict[str, types.ModuleType] = {}

    def handle(self, command: dict[str, Any]) -> None:
        kind = command.get("type")
        if kind == "execute":
            self.execute(command)
        elif kind == "install":
            self.install(command)
        else:
            self.channel.send({"type": "fault", "id": command.get("id"), "error": f"Unknown command: {kind}"})

    def install(self, command: dict[str, Any]) -> None:
        loaded: list[str] = []
        failures: list[str] = []
        for name in command.get("packages", []):
            if name in self.packages:
                continue
            try:
                self.packages[name] = importlib.import_module(name)
            except Exception as e:
                failures.append(f"{name} ({type(e).__name__}: {e})")
                continue
            loaded.append(name)

        if failures:
            self.channel.send(
                {
                    "type": "package_error",
                    "id": command.get("id"),
                    "error": "Failed to install packages: " + "; ".join(failures),
                }
            )
        else:
            self.channel.send({"type": "packages_installed", "id": command.get("id"), "loaded": loaded})

    def execute(self, command: dict[str, Any]) -> None:
        execution_id = command.get("id")
        namespace = self._fresh_namespace()
        baseline = set(namespace)
        threads_before = _thread_count()
        started = time.perf_counter()

        try:
            code = compile(command.get("code", ""), "<user_code>", "exec")
        except (SyntaxError, ValueError) as e:
            error: str | None = "".join(traceback.format_exception_only(type(e), e))
        else:
            error = self._run(code, namespace, command, execution_id)

        self.channel.send(
            {
                "type": "result",
                "id": execution_id,
                "error": error,
                "execution_time_ms": (time.perf_counter() - started) * 1000,
                "memory_used_mb": peak_memory_mb(),
                "variables": capture_variables(namespace, baseline) if error is None else {},
                "recycle": _thread_count() > threads_before,
            }
        )

    def _run(
        self, code: types.CodeType, namespace: dict[str, Any], command: dict[str, Any], execution_id: str | None
    ) -> str | None:
        stdout = OutputCapture(self.channel, "stdout", execution_id)
        stderr = OutputCapture(self.channel, "stderr", execution_id)
        try:
            with (
                working_directory(command.get("cwd")),
                network_guard(bool(command.get("allow_network"))),
                empty_stdin(),
                contextlib.redirect_stdout(stdout),
                contextlib.redirect_stderr(stderr),
                memory_limit(command.get("memory_limit_mb")),
            ):
                exec(code, namespace)
        except SystemExit as e:
            if e.code in (None, 0):
                return None
            return f"SystemExit: {e.code}"
        except MemoryError:
            return "MemoryError: memory limit exceeded"
        except Exception as e:
            return format_user_exception(e)
        return None

    def _fresh_namespace(self) -> dict[str, Any]:
        namespace: dict[str, Any] = {"__name__": "__main__", "__builtins__": dict(vars(builtins))}
        for name in PRELOADED_MODULES:
            namespace[name] = importlib.import_module(name)
        return namespace


def main() -> int:
    stdin = sys.stdin
    channel = open_channel()
    host = InterpreterHost(channel)
    channel.send({"type": "ready", "version": platform.python_version()})

    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            command = json.loads(line)
        except json.JSONDecodeError as e:
            channel.send({"type": "fault", "id": None, "error": f"Malformed command: {e}"})
            continue
        if command.get("type") == "shutdown":
            break
        host.handle(command)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
