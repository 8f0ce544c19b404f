# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from typing import Any

from groeimet_sandbox.models import ErrorKind, SafetyViolation


class SandboxError(Exception):
    """Base class for every error raised by the sandbox service."""

    status_code: int = 500
    kind: str = "internal_error"


class AdmissionError(SandboxError):
    """A request was refused before any code ran."""

    status_code = 400
    kind = "admission_error"


class AuthenticationError(AdmissionError):
    status_code = 401
    kind = "unauthenticated"


class InvalidRequestError(AdmissionError):
    """The request body does not match the execution schema."""

    status_code = 400
    kind = "invalid_request"

    def __init__(self, message: str = "Invalid request", details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.details = details or []


class RateLimitExceededError(AdmissionError):
    status_code = 429
    kind = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message)


class SafetyViolationError(AdmissionError):
    """Source code matched a deny-list pattern."""

    status_code = 400
    kind = "unsafe_code"

    def __init__(self, violation: SafetyViolation):
        super().__init__("Code contains potentially dangerous operations")
        self.violation = violation


class EngineBusyError(SandboxError):
    """The interpreter queue is full."""

    status_code = 503
    kind = "engine_busy"


class EngineFault(SandboxError):
    """A runtime could not carry out an execution.

    Engine faults are converted into tagged results by the dispatcher and never
    reach the transport layer.
    """

    error_kind: ErrorKind = ErrorKind.RUNTIME


class PackageInstallationError(EngineFault):
    error_kind = ErrorKind.PACKAGE
    kind = "package_error"


class EngineUnavailableError(EngineFault):
    error_kind = ErrorKind.ENGINE_UNAVAILABLE
    kind = "engine_unavailable"
