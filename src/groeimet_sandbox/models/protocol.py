# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""Typed messages exchanged with interpreter host processes.

Hosts speak JSON lines: one command per line on stdin, one event per line on
stdout. The Python worker and the Node.js host share the event vocabulary.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class ExecuteCommand(BaseModel):
    type: Literal["execute"] = "execute"
    id: str
    code: str
    cwd: str | None = None
    allow_network: bool = False
    memory_limit_mb: int | None = None


class InstallCommand(BaseModel):
    type: Literal["install"] = "install"
    id: str
    packages: list[str]


class ShutdownCommand(BaseModel):
    type: Literal["shutdown"] = "shutdown"


class ReadyEvent(BaseModel):
    type: Literal["ready"]
    version: str = ""


class OutputEvent(BaseModel):
    type: Literal["stdout", "stderr"]
    id: str | None = None
    data: str


class ResultEvent(BaseModel):
    type: Literal["result"]
    id: str | None = None
    error: str | None = None
    timed_out: bool = False
    execution_time_ms: float | None = None
    memory_used_mb: float | None = None
    variables: dict[str, Any] | None = None
    # The host left state behind (e.g. running threads) and must not serve another request.
    recycle: bool = False


class PackagesInstalledEvent(BaseModel):
    type: Literal["packages_installed"]
    id: str | None = None
    loaded: list[str] = Field(default_factory=list)


class PackageErrorEvent(BaseModel):
    type: Literal["package_error"]
    id: str | None = None
    error: str


class TranspiledEvent(BaseModel):
    type: Literal["transpiled"]
    code: str
    diagnostics: list[str] = Field(default_factory=list)


class FaultEvent(BaseModel):
    type: Literal["fault"]
    id: str | None = None
    error: str


HostEvent = Annotated[
    Union[
        ReadyEvent,
        OutputEvent,
        ResultEvent,
        PackagesInstalledEvent,
        PackageErrorEvent,
        TranspiledEvent,
        FaultEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(HostEvent)


def parse_event(line: bytes | str) -> Any:
    """Parse one JSON line emitted by a host process.

    Raises:
        pydantic.ValidationError: If the line is not a known event.
    """
    return _EVENT_ADAPTER.validate_json(line)


def encode_command(command: ExecuteCommand | InstallCommand | ShutdownCommand) -> bytes:
    return command.model_dump_json().encode("utf-8") + b"\n"
