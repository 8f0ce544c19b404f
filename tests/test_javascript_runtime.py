# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import shutil
import time
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from groeimet_sandbox.dispatcher import LanguageDispatcher
from groeimet_sandbox.errors import EngineUnavailableError, PackageInstallationError
from groeimet_sandbox.models import ErrorKind, ExecutionRequest, ProgressEvent
from groeimet_sandbox.runtimes import JavaScriptRuntime, TypeScriptRuntime
from groeimet_sandbox.runtimes.channel import TRUNCATION_NOTICE

requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="Node.js is not installed")


def _request(code: str, language: str = "javascript", **fields: object) -> ExecutionRequest:
    return ExecutionRequest.model_validate({"language": language, "code": code, **fields})


@pytest_asyncio.fixture
async def js() -> AsyncIterator[JavaScriptRuntime]:
    runtime = JavaScriptRuntime(default_time_limit_ms=10_000)
    yield runtime
    await runtime.terminate()


@pytest_asyncio.fixture
async def ts() -> AsyncIterator[TypeScriptRuntime]:
    runtime = TypeScriptRuntime(default_time_limit_ms=10_000)
    try:
        await runtime.transpile("const probe: number = 1;", timeout=10.0)
    except EngineUnavailableError as e:
        pytest.skip(f"TypeScript support unavailable: {e}")
    yield runtime
    await runtime.terminate()


@pytest.mark.asyncio
async def test_missing_node() -> None:
    runtime = JavaScriptRuntime(node_executable="definitely-not-node")
    with pytest.raises(EngineUnavailableError, match="Node.js executable not found"):
        await runtime.execute(_request("console.log(1)"))


@pytest.mark.asyncio
async def test_packages_are_python_only() -> None:
    with pytest.raises(PackageInstallationError):
        await JavaScriptRuntime().execute(_request("console.log(1)", packages=["lodash"]))


@requires_node
@pytest.mark.asyncio
async def test_console_output(js: JavaScriptRuntime) -> None:
    code = "console.log('sum', 1 + 1)\nconsole.info({a: 1})\nconsole.warn('careful')\nconsole.error('bad')"
    result = await js.execute(_request(code))

    assert result.completed
    assert result.output == 'sum 2\n{\n  "a": 1\n}\nWarning: careful\n'
    assert result.stderr == "bad\n"


@requires_node
@pytest.mark.asyncio
async def test_progress_events(js: JavaScriptRuntime) -> None:
    events: list[ProgressEvent] = []
    await js.execute(_request("console.log('a'); console.log('b')"), on_progress=events.append)
    assert [e.data for e in events] == ["a\n", "b\n"]


@requires_node
@pytest.mark.asyncio
async def test_top_level_await_and_return(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("const v = await Promise.resolve(41)\nconsole.log(v + 1)\nreturn"))
    assert result.output == "42\n"


@requires_node
@pytest.mark.asyncio
async def test_thrown_error_keeps_partial_output(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("console.log('before')\nthrow new TypeError('nope')"))
    assert result.output == "before\n"
    assert result.error_kind is ErrorKind.RUNTIME
    assert result.error_message == "TypeError: nope"


@requires_node
@pytest.mark.asyncio
async def test_syntax_error(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("let = ;"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert (result.error_message or "").startswith("SyntaxError")


@requires_node
@pytest.mark.asyncio
async def test_no_host_capabilities(js: JavaScriptRuntime) -> None:
    code = "console.log(typeof globalThis.process, typeof globalThis.require, typeof globalThis.setTimeout)"
    result = await js.execute(_request(code))
    assert result.output == "undefined undefined undefined\n"


@requires_node
@pytest.mark.asyncio
async def test_string_code_generation_disabled(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("const F = (() => {}).constructor\nF.call(null, 'return 1')"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert "EvalError" in (result.error_message or "")


@requires_node
@pytest.mark.asyncio
async def test_fetch_only_with_network(js: JavaScriptRuntime) -> None:
    blocked = await js.execute(_request("console.log(typeof globalThis.fetch)"))
    assert blocked.output == "undefined\n"
    allowed = await js.execute(_request("console.log(typeof globalThis.fetch)", allowNetwork=True))
    assert allowed.output == "function\n"


@requires_node
@pytest.mark.asyncio
async def test_infinite_loop_times_out(js: JavaScriptRuntime) -> None:
    started = time.perf_counter()
    result = await js.execute(_request("console.log('spinning')\nwhile (true) {}", timeLimit=1000))
    elapsed = time.perf_counter() - started

    assert result.error_kind is ErrorKind.TIMEOUT
    assert result.error_message == "Execution timeout exceeded"
    assert result.output == "spinning\n"
    assert 1.0 <= elapsed < 2.5


@requires_node
@pytest.mark.asyncio
async def test_async_loop_hits_host_guard(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("await null\nwhile (true) {}", timeLimit=1000))
    assert result.error_kind is ErrorKind.TIMEOUT


@requires_node
@pytest.mark.asyncio
async def test_never_settling_promise(js: JavaScriptRuntime) -> None:
    result = await js.execute(_request("await new Promise(() => {})"))
    assert result.error_kind is ErrorKind.RUNTIME
    assert "pending promise never settled" in (result.error_message or "")


@requires_node
@pytest.mark.asyncio
async def test_typescript_matches_javascript(js: JavaScriptRuntime, ts: TypeScriptRuntime) -> None:
    typed = "const xs: number[] = [1, 2, 3]\nconst total: number = xs.reduce((a: number, b: number) => a + b, 0)\n"
    plain = "const xs = [1, 2, 3]\nconst total = xs.reduce((a, b) => a + b, 0)\n"
    tail = "console.log(total, { xs })"

    ts_result = await ts.execute(_request(typed + tail, language="typescript"))
    js_result = await js.execute(_request(plain + tail))

    assert ts_result.completed
    assert ts_result.output == js_result.output


@requires_node
@pytest.mark.asyncio
async def test_typescript_interfaces_are_erased(ts: TypeScriptRuntime) -> None:
    code = "interface Point { x: number; y: number }\nconst p: Point = { x: 1, y: 2 }\nconsole.log(p.x + p.y)"
    result = await ts.execute(_request(code, language="typescript"))
    assert result.output == "3\n"


@requires_node
@pytest.mark.asyncio
async def test_typescript_syntax_error_is_compile_error(ts: TypeScriptRuntime) -> None:
    result = await ts.execute(_request("const x: number = ;", language="typescript"))
    assert result.error_kind is ErrorKind.COMPILE
    assert result.output == ""


@pytest.mark.asyncio
async def test_restart_leaves_running_hosts_alone() -> None:
    runtime = JavaScriptRuntime()
    runtime._node_path = "/usr/bin/node"
    host = MagicMock(returncode=None)
    runtime._processes.add(host)

    await runtime.restart()

    host.kill.assert_not_called()
    assert host in runtime._processes
    assert runtime._node_path is None


@requires_node
@pytest.mark.asyncio
async def test_huge_console_write(js: JavaScriptRuntime) -> None:
    big = await js.execute(_request("console.log('x'.repeat(2e7))"))
    assert big.completed
    assert big.output.endswith(TRUNCATION_NOTICE)

    assert (await js.execute(_request("console.log('after')"))).output == "after\n"


@requires_node
@pytest.mark.asyncio
async def test_restart_during_execution(js: JavaScriptRuntime) -> None:
    code = "const end = Date.now() + 1000\nwhile (Date.now() < end) {}\nconsole.log('done')"
    running = asyncio.create_task(js.execute(_request(code, timeLimit=10_000)))
    await asyncio.sleep(0.3)

    await js.restart()

    result = await running
    assert result.completed
    assert result.output == "done\n"


SLOW_TRANSPILER = """
module.exports = {
  ModuleKind: { CommonJS: 1 },
  ScriptTarget: { ES2022: 9 },
  flattenDiagnosticMessageText: (text) => String(text),
  transpileModule(code) {
    if (code.includes('SLOW')) {
      for (;;) {}
    }
    return { outputText: code, diagnostics: [] };
  },
};
"""


@pytest.fixture
def slow_transpiler(tmp_path: Path) -> str:
    module = tmp_path / "slow_typescript.js"
    module.write_text(SLOW_TRANSPILER)
    return str(module)


@requires_node
@pytest.mark.asyncio
async def test_transpile_timeout_is_timeout(slow_transpiler: str) -> None:
    runtime = TypeScriptRuntime(typescript_module=slow_transpiler)
    try:
        result = await runtime.execute(_request("// SLOW", language="typescript", timeLimit=1000))
    finally:
        await runtime.terminate()

    assert result.error_kind is ErrorKind.TIMEOUT
    assert result.error_message == "Execution timeout exceeded"
    assert 1000 <= result.execution_time_ms < 2000


@requires_node
@pytest.mark.asyncio
async def test_slow_transpile_does_not_disturb_other_requests(slow_transpiler: str) -> None:
    runtime = TypeScriptRuntime(typescript_module=slow_transpiler, default_time_limit_ms=10_000)
    dispatcher = LanguageDispatcher({"typescript": runtime})
    busy = "const end = Date.now() + 2500\nwhile (Date.now() < end) {}\nconsole.log('done')"
    try:
        first = asyncio.create_task(dispatcher.dispatch(_request(busy, language="typescript", timeLimit=10_000)))
        await asyncio.sleep(0.3)

        second = await dispatcher.dispatch(_request("// SLOW", language="typescript", timeLimit=1000))
        assert second.error_kind is ErrorKind.TIMEOUT

        result = await first
        assert result.completed
        assert result.output == "done\n"
    finally:
        await dispatcher.shutdown()
