# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""
groeimet-sandbox
"""

__version__ = "0.1.0"

from .config import SandboxConfig
from .errors import (
    AuthenticationError,
    EngineBusyError,
    EngineUnavailableError,
    InvalidRequestError,
    PackageInstallationError,
    RateLimitExceededError,
    SafetyViolationError,
    SandboxError,
)
from .factory import SandboxFactory
from .models import ErrorKind, ExecutionReport, ExecutionRequest, ExecutionResult, Identity
from .sandbox import Sandbox, SandboxAsync
from .service import ExecutionService

__all__ = [
    "AuthenticationError",
    "EngineBusyError",
    "EngineUnavailableError",
    "ErrorKind",
    "ExecutionReport",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionService",
    "Identity",
    "InvalidRequestError",
    "PackageInstallationError",
    "RateLimitExceededError",
    "SafetyViolationError",
    "Sandbox",
    "SandboxAsync",
    "SandboxConfig",
    "SandboxError",
    "SandboxFactory",
]
