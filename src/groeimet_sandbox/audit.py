# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import hashlib

from loguru import logger

from groeimet_sandbox.models import ExecutionRequest, Identity


class AuditLogger:
    """Audit trail for code execution requests.

    Records who ran what, identified by a SHA-256 hash of the source rather than
    the source itself.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def log_execution(self, identity: Identity, request: ExecutionRequest) -> str:
        """Log the execution attempt and return the hash of the code."""
        code_hash = hashlib.sha256(request.source_code.encode("utf-8")).hexdigest()
        if self.enabled:
            logger.info(
                f"AUDIT: Code execution request: user={identity.sub}, language={request.language}, "
                f"code_length={len(request.source_code)}, hash={code_hash}"
            )
        return code_hash
