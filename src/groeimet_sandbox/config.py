# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class SandboxConfig(BaseSettings):
    """
    Configuration for the code execution service.
    """

    # Admission control
    rate_limit_requests: int = 10
    rate_limit_window_seconds: float = 60.0

    # Execution defaults, applied when a request leaves them unset
    default_time_limit_ms: int = 30_000
    default_memory_limit_mb: int = 256
    max_output_bytes: int = 1_000_000

    # Python engine
    python_executable: str | None = None
    engine_startup_timeout: float = 30.0
    python_queue_size: int = 4
    allowed_packages: set[str] = {
        "numpy",
        "pandas",
        "matplotlib",
        "scipy",
        "scikit-learn",
        "sympy",
    }
    package_import_names: dict[str, str] = {
        "scikit-learn": "sklearn",
        "pillow": "PIL",
        "beautifulsoup4": "bs4",
    }

    # JavaScript / TypeScript
    node_executable: str = "node"
    typescript_module: str = "typescript"
    transpile_timeout: float = 10.0

    # Identity verification
    auth_mode: Literal["static", "introspection"] = "static"
    auth_static_tokens: dict[str, str] = {}
    auth_introspection_url: str | None = None
    auth_client_id: str | None = None
    auth_client_secret: str | None = None
    mcp_identity: str = "mcp-client"

    enable_audit_logging: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"

    host: str = "127.0.0.1"
    port: int = 8000
    cors_allow_origin: str = "*"

    model_config = SettingsConfigDict(
        env_prefix="GROEIMET_SANDBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
