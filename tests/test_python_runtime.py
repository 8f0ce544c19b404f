# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import sys
from collections.abc import AsyncIterator
from types import SimpleNamespace

import pytest
import pytest_asyncio

from groeimet_sandbox.errors import EngineBusyError, EngineUnavailableError, PackageInstallationError
from groeimet_sandbox.models import ErrorKind, ExecutionRequest, ProgressEvent
from groeimet_sandbox.runtimes.channel import TRUNCATION_NOTICE, OutputCollector
from groeimet_sandbox.runtimes.python import TIMEOUT_MESSAGE, EngineState, PythonRuntime, _WorkerExited


def _request(code: str, **fields: object) -> ExecutionRequest:
    return ExecutionRequest.model_validate({"language": "python", "code": code, **fields})


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[PythonRuntime]:
    runtime = PythonRuntime(allowed_packages={"json", "definitely-not-installed"}, default_time_limit_ms=10_000)
    yield runtime
    await runtime.terminate()


@pytest.mark.asyncio
async def test_print(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("print(1+1)"))

    assert result.completed
    assert result.output == "2\n"
    assert result.error_message is None
    assert engine.state is EngineState.READY


@pytest.mark.asyncio
async def test_lazy_single_flight_startup(engine: PythonRuntime) -> None:
    assert engine.state is EngineState.UNINITIALIZED
    await asyncio.gather(engine.start(), engine.start(), engine.start())
    assert engine.state is EngineState.READY
    pid = engine.pid

    await engine.execute(_request("x = 1"))
    assert engine.pid == pid


@pytest.mark.asyncio
async def test_completed_execution_is_within_limit(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("total = sum(range(1000))", timeLimit=2000))
    assert result.completed
    assert result.execution_time_ms < 2000


@pytest.mark.asyncio
async def test_stdout_and_stderr_are_separate(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("import sys\nprint('out')\nprint('err', file=sys.stderr)"))
    assert result.output == "out\n"
    assert result.stderr == "err\n"
    assert result.completed


@pytest.mark.asyncio
async def test_progress_events(engine: PythonRuntime) -> None:
    events: list[ProgressEvent] = []
    await engine.execute(_request("print('a')\nprint('b')"), on_progress=events.append)
    assert "".join(e.data for e in events if e.type == "stdout") == "a\nb\n"


@pytest.mark.asyncio
async def test_runtime_error_keeps_partial_output(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("print('before')\n1 / 0\nprint('after')"))

    assert result.output == "before\n"
    assert result.error_kind is ErrorKind.RUNTIME
    assert result.error_message is not None
    assert "ZeroDivisionError: division by zero" in result.error_message
    assert "python_worker" not in result.error_message
    assert result.captured_variables is None


@pytest.mark.asyncio
async def test_syntax_error(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("def broken(:\n    pass"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert "SyntaxError" in (result.error_message or "")


@pytest.mark.asyncio
async def test_system_exit(engine: PythonRuntime) -> None:
    assert (await engine.execute(_request("raise SystemExit(0)"))).completed
    failed = await engine.execute(_request("raise SystemExit(3)"))
    assert failed.error_message == "SystemExit: 3"


@pytest.mark.asyncio
async def test_captured_variables(engine: PythonRuntime) -> None:
    code = "x = 2\nname = 'ada'\nitems = [1, 2]\n_hidden = 1\ndef f(): pass\nobj = object()\nimport math"
    result = await engine.execute(_request(code))

    variables = result.captured_variables or {}
    assert variables["x"] == 2
    assert variables["name"] == "ada"
    assert variables["items"] == [1, 2]
    assert variables["obj"].startswith("<object object")
    assert "_hidden" not in variables
    assert "f" not in variables
    assert "math" not in variables


@pytest.mark.asyncio
async def test_namespace_is_fresh_per_execution(engine: PythonRuntime) -> None:
    await engine.execute(_request("leftover = 1"))
    result = await engine.execute(_request("print(leftover)"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert "NameError" in (result.error_message or "")


@pytest.mark.asyncio
async def test_preloaded_modules(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("print(math.floor(json.loads('2.5')))"))
    assert result.output == "2\n"


@pytest.mark.asyncio
async def test_input_reads_nothing(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("input()"))
    assert "EOFError" in (result.error_message or "")
    # The worker survives and keeps serving requests.
    assert (await engine.execute(_request("print('still here')"))).output == "still here\n"


@pytest.mark.asyncio
async def test_auxiliary_files(engine: PythonRuntime) -> None:
    code = "with open('data/values.txt') as f:\n    print(sum(int(v) for v in f.read().split()))"
    result = await engine.execute(_request(code, files={"data/values.txt": "1 2 3"}))
    assert result.output == "6\n"


@pytest.mark.asyncio
async def test_network_is_blocked_by_default(engine: PythonRuntime) -> None:
    blocked = await engine.execute(_request("import socket"))
    assert "network access is disabled" in (blocked.error_message or "")

    allowed = await engine.execute(_request("import socket\nprint(socket.AF_INET.name)", allowNetwork=True))
    assert allowed.output == "AF_INET\n"


@pytest.mark.asyncio
async def test_timeout_keeps_partial_output_and_recycles(engine: PythonRuntime) -> None:
    await engine.start()
    first_pid = engine.pid

    result = await engine.execute(_request("print('before')\nwhile True:\n    pass", timeLimit=1000))

    assert result.error_kind is ErrorKind.TIMEOUT
    assert result.error_message == TIMEOUT_MESSAGE
    assert result.output == "before\n"
    assert 1000 <= result.execution_time_ms < 1500
    assert engine.state is EngineState.UNINITIALIZED

    after = await engine.execute(_request("print('fresh')"))
    assert after.output == "fresh\n"
    assert engine.pid != first_pid


@pytest.mark.asyncio
async def test_worker_crash_is_runtime_error(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("import os\nos._exit(9)"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert "exited unexpectedly" in (result.error_message or "")
    assert engine.state is EngineState.UNINITIALIZED
    assert (await engine.execute(_request("print(1)"))).output == "1\n"


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="RLIMIT_AS is only enforced on Linux")
@pytest.mark.asyncio
async def test_memory_limit(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("block = bytearray(512 * 1024 * 1024)", memoryLimit=32))
    assert result.error_message == "MemoryError: memory limit exceeded"

    # The limit is lifted after the run.
    assert (await engine.execute(_request("block = bytearray(64 * 1024 * 1024)\nprint(len(block))"))).completed


@pytest.mark.asyncio
async def test_packages_are_loaded_once(engine: PythonRuntime) -> None:
    result = await engine.execute(_request("print(json.dumps([1]))", packages=["json"]))
    assert result.output == "[1]\n"
    again = await engine.execute(_request("print('ok')", packages=["json"]))
    assert again.completed


@pytest.mark.asyncio
async def test_package_not_allowed(engine: PythonRuntime) -> None:
    with pytest.raises(PackageInstallationError, match="not in the allowed list"):
        await engine.execute(_request("print(1)", packages=["left-pad"]))
    assert engine.state is EngineState.UNINITIALIZED


@pytest.mark.asyncio
async def test_package_that_cannot_be_imported(engine: PythonRuntime) -> None:
    with pytest.raises(PackageInstallationError, match="Failed to install packages: definitely_not_installed"):
        await engine.execute(_request("print(1)", packages=["definitely-not-installed"]))
    # Package failures leave the worker usable.
    assert (await engine.execute(_request("print(1)"))).completed


def test_resolve_packages() -> None:
    runtime = PythonRuntime(
        allowed_packages={"scikit-learn", "numpy"}, package_import_names={"scikit-learn": "sklearn"}
    )
    assert runtime.resolve_packages(["numpy>=1.26", "Scikit_Learn", "numpy"]) == ["numpy", "sklearn"]
    with pytest.raises(PackageInstallationError, match="Invalid package requirement"):
        runtime.resolve_packages(["not a requirement!"])


@pytest.mark.asyncio
async def test_queue_rejects_when_full() -> None:
    runtime = PythonRuntime(max_pending=1)
    try:
        slow = asyncio.create_task(runtime.execute(_request("total = 0\nfor i in range(10**7):\n    total += i")))
        await asyncio.sleep(0)
        with pytest.raises(EngineBusyError):
            await runtime.execute(_request("print(1)"))
        assert (await slow).completed
    finally:
        await runtime.terminate()


@pytest.mark.asyncio
async def test_failed_startup() -> None:
    runtime = PythonRuntime(python_executable="/nonexistent/python3")

    with pytest.raises(EngineUnavailableError):
        await runtime.execute(_request("print(1)"))
    assert runtime.state is EngineState.FAILED

    # Fails fast until restarted.
    with pytest.raises(EngineUnavailableError):
        await runtime.start()
    await runtime.restart()
    assert runtime.state is EngineState.UNINITIALIZED


@pytest.mark.asyncio
async def test_timeout_output_is_prefix_of_full_run(engine: PythonRuntime) -> None:
    code = "import time\nprint('a')\nend = time.perf_counter() + 2.0\nwhile time.perf_counter() < end:\n    pass\nprint('b')"

    short = await engine.execute(_request(code, timeLimit=1000))
    full = await engine.execute(_request(code, timeLimit=10_000))

    assert short.error_kind is ErrorKind.TIMEOUT
    assert full.completed
    assert full.output == "a\nb\n"
    assert full.output.startswith(short.output)
    assert short.output == "a\n"


@pytest.mark.asyncio
async def test_huge_single_write_does_not_desync_worker(engine: PythonRuntime) -> None:
    big = await engine.execute(_request("print('x' * 20_000_000)"))

    assert big.completed
    assert big.output.endswith(TRUNCATION_NOTICE)
    assert big.output.startswith("x" * 1000)

    assert (await engine.execute(_request("print('second')"))).output == "second\n"
    assert (await engine.execute(_request("print('third')"))).output == "third\n"


@pytest.mark.asyncio
async def test_lingering_thread_output_does_not_reach_next_run(engine: PythonRuntime) -> None:
    code = (
        "import threading, time\n"
        "def spam():\n"
        "    i = 0\n"
        "    while True:\n"
        "        i += 1\n"
        "        print(f'LEAK {i}')\n"
        "        time.sleep(0.01)\n"
        "threading.Thread(target=spam, daemon=True).start()\n"
        "time.sleep(0.05)"
    )
    await engine.start()
    first_pid = engine.pid

    first = await engine.execute(_request(code))
    assert first.output.startswith("LEAK 1\n")
    assert engine.state is EngineState.UNINITIALIZED

    second = await engine.execute(_request("import time\ntime.sleep(0.3)\nprint('mine')"))
    assert second.output == "mine\n"
    assert engine.pid != first_pid


def _fake_worker(lines: list[bytes], limit: int = 2**16) -> SimpleNamespace:
    stdout = asyncio.StreamReader(limit=limit)
    for line in lines:
        stdout.feed_data(line)
    stdout.feed_eof()
    return SimpleNamespace(stdout=stdout, pid=1, returncode=None)


@pytest.mark.asyncio
async def test_events_for_other_executions_are_discarded() -> None:
    runtime = PythonRuntime()
    runtime._process = _fake_worker(  # type: ignore[assignment]
        [
            b'{"type": "stdout", "id": "old", "data": "stale\\n"}\n',
            b'{"type": "result", "id": "old"}\n',
            b'{"type": "stdout", "id": "new", "data": "fresh\\n"}\n',
            b'{"type": "result", "id": "new"}\n',
        ]
    )
    collector = OutputCollector(limit=1000)

    reply = await runtime._next_reply("new", collector)

    assert reply.type == "result"
    assert reply.id == "new"
    assert collector.stdout.getvalue() == "fresh\n"


@pytest.mark.asyncio
async def test_oversized_worker_message_ends_the_conversation() -> None:
    runtime = PythonRuntime()
    runtime._process = _fake_worker(  # type: ignore[assignment]
        [b'{"type": "stdout", "id": "run", "data": "' + b"x" * 500 + b'"}\n'], limit=64
    )

    with pytest.raises(_WorkerExited, match="channel failed"):
        await runtime._next_reply("run", OutputCollector(limit=1000))
