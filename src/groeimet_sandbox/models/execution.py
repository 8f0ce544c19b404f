# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Language = Literal["python", "javascript", "typescript"]

MAX_CODE_LENGTH = 50_000
MIN_TIME_LIMIT_MS = 1_000
MAX_TIME_LIMIT_MS = 300_000
MIN_MEMORY_LIMIT_MB = 16
MAX_MEMORY_LIMIT_MB = 512
MAX_PACKAGES = 20


class ErrorKind(str, Enum):
    """Why an execution did not complete successfully."""

    RUNTIME = "runtime_error"
    TIMEOUT = "timeout"
    PACKAGE = "package_error"
    COMPILE = "compile_error"
    ENGINE_UNAVAILABLE = "engine_unavailable"


class ExecutionRequest(BaseModel):
    """A request to run untrusted source code.

    Field names are snake_case in Python; the wire format accepts the
    camelCase names used by the course platform (`code`, `timeLimit`,
    `memoryLimit`, `files`, `allowNetwork`).

    Attributes:
        language: The language the source is written in.
        source_code: The program to run.
        time_limit_ms: Wall-clock limit for the run. Defaults to the configured limit.
        memory_limit_mb: Address space budget for the run. Defaults to the configured limit.
        packages: Extra packages the program needs (Python only).
        auxiliary_files: Files placed in the working directory before the run.
        allow_network: Whether networking primitives may be used.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    language: Language
    source_code: str = Field(..., alias="code", min_length=1, max_length=MAX_CODE_LENGTH)
    time_limit_ms: int | None = Field(
        default=None, alias="timeLimit", ge=MIN_TIME_LIMIT_MS, le=MAX_TIME_LIMIT_MS
    )
    memory_limit_mb: int | None = Field(
        default=None, alias="memoryLimit", ge=MIN_MEMORY_LIMIT_MB, le=MAX_MEMORY_LIMIT_MB
    )
    packages: list[str] = Field(default_factory=list, max_length=MAX_PACKAGES)
    auxiliary_files: dict[str, str] = Field(default_factory=dict, alias="files")
    allow_network: bool = Field(default=False, alias="allowNetwork")

    @field_validator("packages", mode="before")
    @classmethod
    def _none_packages(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("auxiliary_files", mode="before")
    @classmethod
    def _none_files(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("auxiliary_files")
    @classmethod
    def _relative_paths(cls, value: dict[str, str]) -> dict[str, str]:
        for name in value:
            path = PurePosixPath(name)
            if not name or path.is_absolute() or ".." in path.parts or "\\" in name:
                raise ValueError(f"File path must be relative to the working directory: {name!r}")
        return value


class ExecutionResult(BaseModel):
    """Outcome of one dispatched execution.

    A result either completed (no error) or carries exactly one error kind with
    its message. Output captured before a fault or timeout is kept.
    """

    output: str = ""
    stderr: str = ""
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    execution_time_ms: float = 0.0
    memory_used_mb: float | None = None
    captured_variables: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _error_is_tagged(self) -> "ExecutionResult":
        if (self.error_message is None) != (self.error_kind is None):
            raise ValueError("error_message and error_kind must be set together")
        return self

    @property
    def completed(self) -> bool:
        return self.error_kind is None


class ExecutionReport(BaseModel):
    """Language-agnostic response contract handed to the calling surface."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    output: str
    stderr: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    execution_time_ms: float
    memory_used_mb: float | None = None
    variables: dict[str, Any] | None = None


class ProgressEvent(BaseModel):
    """An incremental chunk of output emitted while a program runs."""

    type: Literal["stdout", "stderr", "system"]
    data: str
    timestamp: float


class SafetyViolation(BaseModel):
    """The first deny-list pattern a piece of source code matched."""

    matched_pattern: str
    language: Language
