# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import sys
from pathlib import Path

from loguru import logger

from groeimet_sandbox.config import SandboxConfig

__all__ = ["logger"]

_config = SandboxConfig()

# Remove default handler
logger.remove()

# Sink 1: Stderr (Human-readable)
logger.add(
    sys.stderr,
    level=_config.log_level,
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    ),
)

# Ensure logs directory exists
log_path = Path(_config.log_dir)
log_path.mkdir(parents=True, exist_ok=True)

# Sink 2: File (JSON, Rotation, Retention)
logger.add(
    log_path / "app.log",
    rotation="500 MB",
    retention="10 days",
    serialize=True,
    enqueue=True,
    level=_config.log_level,
)
