# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import asyncio
import shutil
import tempfile
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any

import aiofiles  # type: ignore[import-untyped]
from loguru import logger
from pydantic import ValidationError

from groeimet_sandbox.models import ProgressEvent
from groeimet_sandbox.models.protocol import OutputEvent, parse_event
from groeimet_sandbox.runtime import ProgressCallback

# Upper bound for a single JSON line from a host process.
STREAM_LIMIT = 16 * 1024 * 1024
TRUNCATION_NOTICE = "\n[output truncated]\n"


class OutputBuffer:
    """Accumulates one output stream up to a size cap."""

    def __init__(self, limit: int):
        self.limit = limit
        self._parts: list[str] = []
        self._size = 0
        self.truncated = False

    def append(self, data: str) -> None:
        remaining = self.limit - self._size
        if remaining <= 0:
            self.truncated = True
            return
        if len(data) > remaining:
            data = data[:remaining]
            self.truncated = True
        self._parts.append(data)
        self._size += len(data)

    def getvalue(self) -> str:
        text = "".join(self._parts)
        return text + TRUNCATION_NOTICE if self.truncated else text


class OutputCollector:
    """Buffers stdout/stderr events and forwards them as progress events."""

    def __init__(self, limit: int, on_progress: ProgressCallback | None = None):
        self.stdout = OutputBuffer(limit)
        self.stderr = OutputBuffer(limit)
        self._on_progress = on_progress

    def feed(self, event: OutputEvent) -> None:
        buffer = self.stdout if event.type == "stdout" else self.stderr
        buffer.append(event.data)
        if self._on_progress is not None:
            try:
                self._on_progress(ProgressEvent(type=event.type, data=event.data, timestamp=time.time()))
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


class ChannelOverflowError(Exception):
    """A host wrote a line longer than STREAM_LIMIT; the channel is out of sync."""


async def read_event(stream: asyncio.StreamReader) -> Any | None:
    """Read the next event from a host process, or None at end of stream.

    Raises:
        ChannelOverflowError: If a line exceeds the stream limit.
    """
    while True:
        try:
            line = await stream.readline()
        except (ValueError, asyncio.LimitOverrunError) as e:
            raise ChannelOverflowError(f"Host message exceeded {STREAM_LIMIT} bytes") from e
        if not line:
            return None
        if not line.strip():
            continue
        try:
            return parse_event(line)
        except ValidationError:
            logger.warning(f"Ignoring malformed host message: {line[:200]!r}")


async def drain_stderr(stream: asyncio.StreamReader | None, name: str, sink: list[str] | None = None) -> None:
    """Consume a host's stderr so the pipe never fills up."""
    if stream is None:
        return
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            logger.debug(f"[{name}] skipped an oversized stderr line")
            continue
        if not line:
            return
        text = line.decode("utf-8", errors="replace").rstrip()
        if sink is not None:
            sink.append(text)
        logger.debug(f"[{name}] {text}")


async def reap(process: asyncio.subprocess.Process) -> None:
    """Kill a host process if it is still running and wait for it to exit."""
    if process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()


async def write_auxiliary_files(root: Path, files: dict[str, str]) -> None:
    for name, content in files.items():
        target = root / name
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(target, "w", encoding="utf-8") as f:
            await f.write(content)


@asynccontextmanager
async def scratch_directory(files: dict[str, str]) -> AsyncIterator[Path]:
    """A temporary working directory pre-populated with auxiliary files."""
    path = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="groeimet-sandbox-"))
    try:
        await write_auxiliary_files(path, files)
        yield path
    finally:
        await asyncio.to_thread(shutil.rmtree, path, True)
