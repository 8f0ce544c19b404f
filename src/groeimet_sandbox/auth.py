# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import hmac
from typing import Protocol

import httpx
from loguru import logger

from groeimet_sandbox.config import SandboxConfig
from groeimet_sandbox.errors import AuthenticationError
from groeimet_sandbox.models import Identity


class CredentialVerifier(Protocol):
    """Turns a bearer credential into a verified identity."""

    async def verify(self, token: str) -> Identity:
        """Verify `token`.

        Raises:
            AuthenticationError: If the credential is not valid.
        """
        ...


def extract_bearer_token(authorization: str | None) -> str:
    """Return the credential from an `Authorization: Bearer <token>` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Unauthorized")
    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise AuthenticationError("Unauthorized")
    return token


class StaticTokenVerifier:
    """Verifies tokens against a fixed token -> subject table."""

    def __init__(self, tokens: dict[str, str]):
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> Identity:
        for known, subject in self._tokens.items():
            if hmac.compare_digest(known, token):
                return Identity(sub=subject)
        raise AuthenticationError("Invalid token")


class IntrospectionVerifier:
    """Verifies tokens with an OAuth 2.0 token introspection endpoint (RFC 7662)."""

    def __init__(
        self,
        url: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._auth = (client_id, client_secret) if client_id and client_secret else None
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def verify(self, token: str) -> Identity:
        try:
            response = await self._client.post(self.url, data={"token": token}, auth=self._auth)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Token introspection failed: {e}")
            raise AuthenticationError("Invalid token") from e

        if not payload.get("active") or not payload.get("sub"):
            raise AuthenticationError("Invalid token")
        return Identity(sub=str(payload["sub"]), email=payload.get("email"))

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()


def build_verifier(config: SandboxConfig) -> CredentialVerifier:
    if config.auth_mode == "introspection":
        if not config.auth_introspection_url:
            raise ValueError("auth_introspection_url is required for introspection auth")
        return IntrospectionVerifier(
            config.auth_introspection_url,
            client_id=config.auth_client_id,
            client_secret=config.auth_client_secret,
        )
    return StaticTokenVerifier(config.auth_static_tokens)
