"""Credential acquisition and SDP offer/answer exchange for realtime voice."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from ..config import settings
from ..errors import CredentialError, NegotiationError, RequestFailedError
from ..models.schemas import RealtimeCredential
from .edge_functions import EdgeFunctionsClient

logger = logging.getLogger(__name__)

CREDENTIAL_FUNCTION = "realtime-session"


class SignalingClient:
    """Talks to the token-issuing function and the remote negotiation endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        functions: EdgeFunctionsClient,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        self._client = client
        self._functions = functions
        self._base_url = (base_url or settings.realtime_base_url).rstrip("/")
        self._model = model or settings.realtime_model

    async def acquire_ephemeral_credential(self) -> str:
        logger.info("Requesting ephemeral token...")
        try:
            data = await self._functions.invoke(CREDENTIAL_FUNCTION)
        except RequestFailedError as exc:
            raise CredentialError("Failed to get session token") from exc

        try:
            credential = RealtimeCredential.model_validate(data)
        except ValidationError as exc:
            raise CredentialError("Invalid session token received") from exc

        secret = credential.secret
        if secret is None:
            logger.error("Credential response carried no client_secret.value")
            raise CredentialError("Invalid session token received")
        return secret

    async def exchange_offer(self, sdp_offer: str, token: str) -> str:
        """Send the local SDP offer and return the remote SDP answer text."""

        logger.info("Connecting to realtime endpoint (model=%s)", self._model)
        try:
            resp = await self._client.post(
                self._base_url,
                params={"model": self._model},
                content=sdp_offer.encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/sdp",
                },
            )
        except httpx.HTTPError as exc:
            raise NegotiationError(f"SDP exchange failed: {exc}") from exc

        if not resp.is_success:
            raise NegotiationError(f"SDP exchange failed: {resp.status_code}", status=resp.status_code)
        return resp.text
