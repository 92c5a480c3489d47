"""
Actor process transport.

The process client only needs three things from the network: "send accepts
a signed message and returns an id", "result accepts an id and returns
decoded output or not-ready", and "dry run evaluates tags without a durable
send". ``HttpProcessTransport`` implements them over the messenger unit
(MU) and compute unit (CU) HTTP APIs with httpx.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol, Sequence

import httpx

from ario.core.constants import DEFAULT_CU_URL, DEFAULT_HTTP_TIMEOUT, DEFAULT_MU_URL
from ario.core.exceptions import ProcessError, TransportError
from ario.core.models import Tag
from ario.wallet.signer import SignedMessage

logger = logging.getLogger(__name__)

# Statuses worth retrying: throttling and server-side trouble
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})

_DRY_RUN_PLACEHOLDER = "1234"


class ProcessTransport(Protocol):
    """What the process client needs from the network."""

    async def send(self, signed: SignedMessage) -> Dict[str, Any]:
        """Transmit a signed message; returns the receipt mapping (with ``id``)."""
        ...

    async def result(self, process_id: str, message_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the computed output of a message, or None when not ready yet."""
        ...

    async def dry_run(
        self, process_id: str, tags: Sequence[Tag], data: Optional[str] = None
    ) -> Dict[str, Any]:
        """Evaluate a message without persisting it."""
        ...


class HttpProcessTransport:
    """Messenger/compute unit transport over a shared httpx.AsyncClient."""

    def __init__(
        self,
        cu_url: str = DEFAULT_CU_URL,
        mu_url: str = DEFAULT_MU_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.cu_url = cu_url.rstrip("/")
        self.mu_url = mu_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": "ario-sdk/1.0", "Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpProcessTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout: {method} {url}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Connection error: {e}") from e
        logger.debug("%s %s - Status: %d", method, url, response.status_code)
        return response

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise TransportError(f"Malformed JSON from {url}") from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response shape from {url}")
        return data

    def _raise_for_status(self, response: httpx.Response, url: str, process_id: Optional[str]) -> None:
        if response.status_code in RETRYABLE_STATUSES:
            raise TransportError(
                f"HTTP {response.status_code} from {url}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise ProcessError(
                f"HTTP {response.status_code} from {url}: {response.text[:200]}",
                process_id=process_id,
                details={"status_code": response.status_code},
            )

    async def send(self, signed: SignedMessage) -> Dict[str, Any]:
        url = f"{self.mu_url}/"
        response = await self._request("POST", url, json=signed.to_envelope())
        self._raise_for_status(response, url, signed.message.target)
        return self._decode(response, url)

    async def result(self, process_id: str, message_id: str) -> Optional[Dict[str, Any]]:
        url = f"{self.cu_url}/result/{message_id}"
        response = await self._request("GET", url, params={"process-id": process_id})
        if response.status_code == 404:
            return None
        self._raise_for_status(response, url, process_id)
        return self._decode(response, url)

    async def dry_run(
        self, process_id: str, tags: Sequence[Tag], data: Optional[str] = None
    ) -> Dict[str, Any]:
        url = f"{self.cu_url}/dry-run"
        body = {
            "Id": _DRY_RUN_PLACEHOLDER,
            "Target": process_id,
            "Owner": _DRY_RUN_PLACEHOLDER,
            "Anchor": "0",
            "Data": data if data is not None else _DRY_RUN_PLACEHOLDER,
            "Tags": [tag.to_dict() for tag in tags],
        }
        response = await self._request("POST", url, params={"process-id": process_id}, json=body)
        self._raise_for_status(response, url, process_id)
        return self._decode(response, url)
