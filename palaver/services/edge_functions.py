"""Request/response calls to the hosted functions (image, credential, transcription)."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..errors import RequestFailedError, error_for_status

logger = logging.getLogger(__name__)


class EdgeFunctionsClient:
    """POSTs a JSON body to ``{functions_url}/{name}`` and returns the decoded JSON reply."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        raw_base = (base_url or settings.functions_url or "").strip()
        if not raw_base.startswith(("http://", "https://")):
            raise RuntimeError("FUNCTIONS_URL must include http/https scheme")
        self._client = client
        self._base_url = raw_base.rstrip("/")
        self._api_key = api_key if api_key is not None else settings.functions_api_key

    def url_for(self, name: str) -> str:
        return f"{self._base_url}/{name}"

    async def invoke(self, name: str, body: Optional[dict[str, Any]] = None) -> Any:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        logger.info("Invoking function %s", name)
        try:
            resp = await self._client.post(self.url_for(name), json=body or {}, headers=headers)
        except httpx.HTTPError as exc:
            raise RequestFailedError(f"{name} request failed: {exc}") from exc

        if not resp.is_success:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            logger.warning("Function %s answered %s", name, resp.status_code)
            raise error_for_status(resp.status_code, payload)

        try:
            return resp.json()
        except ValueError as exc:
            raise RequestFailedError(f"{name} returned a non-JSON body", status=resp.status_code) from exc
