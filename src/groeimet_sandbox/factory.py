# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from groeimet_sandbox.audit import AuditLogger
from groeimet_sandbox.auth import build_verifier
from groeimet_sandbox.config import SandboxConfig
from groeimet_sandbox.dispatcher import LanguageDispatcher
from groeimet_sandbox.models import Language
from groeimet_sandbox.rate_limit import RateLimiter
from groeimet_sandbox.runtime import ExecutionRuntime
from groeimet_sandbox.runtimes import JavaScriptRuntime, PythonRuntime, TypeScriptRuntime
from groeimet_sandbox.safety import SafetyFilter
from groeimet_sandbox.service import ExecutionService


class SandboxFactory:
    """
    Factory to build runtimes and the execution service from configuration.
    """

    @staticmethod
    def get_runtimes(config: SandboxConfig) -> dict[Language, ExecutionRuntime]:
        """
        Returns one runtime per supported language.
        """
        node_options = {
            "node_executable": config.node_executable,
            "typescript_module": config.typescript_module,
            "default_time_limit_ms": config.default_time_limit_ms,
            "default_memory_limit_mb": config.default_memory_limit_mb,
            "max_output_bytes": config.max_output_bytes,
        }
        return {
            "python": PythonRuntime(
                python_executable=config.python_executable,
                allowed_packages=config.allowed_packages,
                package_import_names=config.package_import_names,
                default_time_limit_ms=config.default_time_limit_ms,
                default_memory_limit_mb=config.default_memory_limit_mb,
                startup_timeout=config.engine_startup_timeout,
                max_pending=config.python_queue_size,
                max_output_bytes=config.max_output_bytes,
            ),
            "javascript": JavaScriptRuntime(**node_options),  # type: ignore[arg-type]
            "typescript": TypeScriptRuntime(
                transpile_timeout=config.transpile_timeout,
                **node_options,  # type: ignore[arg-type]
            ),
        }

    @staticmethod
    def get_service(config: SandboxConfig) -> ExecutionService:
        """
        Returns an execution service wired from the configuration.
        """
        return ExecutionService(
            verifier=build_verifier(config),
            rate_limiter=RateLimiter(config.rate_limit_requests, config.rate_limit_window_seconds),
            safety_filter=SafetyFilter(),
            dispatcher=LanguageDispatcher(SandboxFactory.get_runtimes(config)),
            audit=AuditLogger(enabled=config.enable_audit_logging),
        )
