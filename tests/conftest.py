from typing import Any

import pytest

from groeimet_sandbox.audit import AuditLogger
from groeimet_sandbox.auth import StaticTokenVerifier
from groeimet_sandbox.dispatcher import LanguageDispatcher
from groeimet_sandbox.models import ExecutionRequest, ExecutionResult, Identity
from groeimet_sandbox.rate_limit import RateLimiter
from groeimet_sandbox.runtime import ExecutionRuntime, ProgressCallback
from groeimet_sandbox.safety import SafetyFilter
from groeimet_sandbox.service import ExecutionService

TEST_TOKEN = "test-token"


class RecordingRuntime(ExecutionRuntime):
    """Runtime double that records every call and returns a canned result."""

    def __init__(self, result: ExecutionResult | None = None, error: Exception | None = None):
        self.result = result or ExecutionResult(output="ok\n", execution_time_ms=1.0)
        self.error = error
        self.requests: list[ExecutionRequest] = []
        self.started = 0
        self.terminated = 0
        self.restarted = 0

    async def start(self) -> None:
        self.started += 1

    async def execute(
        self, request: ExecutionRequest, on_progress: ProgressCallback | None = None
    ) -> ExecutionResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result

    async def terminate(self) -> None:
        self.terminated += 1

    async def restart(self) -> None:
        self.restarted += 1


@pytest.fixture
def identity() -> Identity:
    return Identity(sub="test-user", email="test@example.com")


@pytest.fixture
def runtime() -> RecordingRuntime:
    return RecordingRuntime()


@pytest.fixture
def service(runtime: RecordingRuntime) -> ExecutionService:
    return build_service(runtime)


def build_service(runtime: ExecutionRuntime, max_requests: int = 10) -> ExecutionService:
    runtimes: dict[Any, ExecutionRuntime] = {
        "python": runtime,
        "javascript": runtime,
        "typescript": runtime,
    }
    return ExecutionService(
        verifier=StaticTokenVerifier({TEST_TOKEN: "test-user"}),
        rate_limiter=RateLimiter(max_requests=max_requests, window_seconds=60.0),
        safety_filter=SafetyFilter(),
        dispatcher=LanguageDispatcher(runtimes),
        audit=AuditLogger(),
    )


@pytest.fixture
def make_runtime() -> type[RecordingRuntime]:
    return RecordingRuntime


@pytest.fixture
def make_service() -> Any:
    return build_service
