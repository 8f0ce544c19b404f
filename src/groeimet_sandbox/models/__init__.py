# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""
Data models for the sandbox service.
"""

from .execution import (
    ErrorKind,
    ExecutionReport,
    ExecutionRequest,
    ExecutionResult,
    Language,
    ProgressEvent,
    SafetyViolation,
)
from .identity import Identity

__all__ = [
    "ErrorKind",
    "ExecutionReport",
    "ExecutionRequest",
    "ExecutionResult",
    "Identity",
    "Language",
    "ProgressEvent",
    "SafetyViolation",
]
