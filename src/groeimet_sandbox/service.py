# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from typing import Any

from loguru import logger
from pydantic import ValidationError

from groeimet_sandbox.audit import AuditLogger
from groeimet_sandbox.auth import CredentialVerifier, extract_bearer_token
from groeimet_sandbox.dispatcher import LanguageDispatcher
from groeimet_sandbox.errors import InvalidRequestError, RateLimitExceededError, SafetyViolationError
from groeimet_sandbox.models import ExecutionReport, ExecutionRequest, Identity
from groeimet_sandbox.rate_limit import RateLimiter
from groeimet_sandbox.reporter import ResultReporter
from groeimet_sandbox.runtime import ProgressCallback
from groeimet_sandbox.safety import SafetyFilter


class ExecutionService:
    """
    The execution pipeline shared by every surface.

    Order: authenticate, rate limit, validate, screen, audit, dispatch, report.
    A request refused at any stage before dispatch never reaches an interpreter.
    """

    def __init__(
        self,
        verifier: CredentialVerifier,
        rate_limiter: RateLimiter,
        safety_filter: SafetyFilter,
        dispatcher: LanguageDispatcher,
        reporter: ResultReporter | None = None,
        audit: AuditLogger | None = None,
    ):
        self.verifier = verifier
        self.rate_limiter = rate_limiter
        self.safety_filter = safety_filter
        self.dispatcher = dispatcher
        self.reporter = reporter or ResultReporter()
        self.audit = audit or AuditLogger()

    async def authenticate(self, authorization: str | None) -> Identity:
        token = extract_bearer_token(authorization)
        return await self.verifier.verify(token)

    @staticmethod
    def validate(payload: Any) -> ExecutionRequest:
        if isinstance(payload, ExecutionRequest):
            return payload
        try:
            return ExecutionRequest.model_validate(payload)
        except ValidationError as e:
            details = e.errors(include_url=False, include_context=False, include_input=False)
            raise InvalidRequestError("Invalid request", details=[dict(d) for d in details]) from e

    async def execute(
        self,
        identity: Identity,
        payload: Any,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionReport:
        """Run one request through the pipeline.

        Raises:
            RateLimitExceededError: If the identity has used up its quota.
            InvalidRequestError: If the payload does not match the request schema.
            SafetyViolationError: If the source matches a deny-list pattern.
            EngineBusyError: If the interpreter queue is full.
        """
        if not await self.rate_limiter.check(identity.sub):
            logger.info(f"Rate limit exceeded for {identity.sub}")
            raise RateLimitExceededError()

        request = self.validate(payload)

        violation = self.safety_filter.scan(request.source_code, request.language, request.allow_network)
        if violation is not None:
            raise SafetyViolationError(violation)

        await self.audit.log_execution(identity, request)

        result = await self.dispatcher.dispatch(request, on_progress)
        report = self.reporter.report(result)
        logger.info(
            f"Execution finished: user={identity.sub}, language={request.language}, "
            f"success={report.success}, kind={report.error_kind.value if report.error_kind else 'ok'}, "
            f"time={report.execution_time_ms:.1f}ms"
        )
        return report

    async def start(self) -> None:
        await self.dispatcher.start()

    async def shutdown(self) -> None:
        await self.dispatcher.shutdown()
        aclose = getattr(self.verifier, "aclose", None)
        if aclose is not None:
            await aclose()
