"""
Client for the contract state cache service.

``GET <base_url>/contract/<contract_id>?<selector>`` returns a JSON snapshot.
Every failure shape (connection error, timeout, non-2xx, malformed JSON, a
snapshot for the wrong point in time) becomes ``CacheServiceError`` so the
resolver can fall back to local replay.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ario.core.constants import DEFAULT_CACHE_URL, DEFAULT_HTTP_TIMEOUT
from ario.core.exceptions import CacheServiceError
from ario.core.models import ContractState, EvaluationOptions

logger = logging.getLogger(__name__)


class ContractCacheClient:
    """Fetches evaluated contract snapshots from the cache service."""

    def __init__(
        self,
        base_url: str = DEFAULT_CACHE_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
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

    async def fetch_state(self, contract_id: str, selector: EvaluationOptions) -> ContractState:
        """
        Fetch the snapshot of ``contract_id`` at ``selector``.

        Raises:
            CacheServiceError: On any miss or failure.
        """
        url = f"{self.base_url}/contract/{contract_id}"
        params = selector.as_query_params()
        try:
            response = await self._get_client().get(url, params=params)
        except httpx.TimeoutException as e:
            raise CacheServiceError(f"Cache request timeout: {url}") from e
        except httpx.HTTPError as e:
            raise CacheServiceError(f"Cache connection error: {e}") from e

        logger.debug("GET %s - Status: %d", url, response.status_code, extra={"params": params})
        if not 200 <= response.status_code < 300:
            raise CacheServiceError(
                f"Cache returned HTTP {response.status_code} for {contract_id}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise CacheServiceError(f"Cache returned malformed JSON for {contract_id}") from e

        return self._to_state(contract_id, selector, body)

    @staticmethod
    def _to_state(contract_id: str, selector: EvaluationOptions, body: Any) -> ContractState:
        if not isinstance(body, dict) or not isinstance(body.get("state"), dict):
            raise CacheServiceError(f"Cache response for {contract_id} has no state object")

        sort_key = body.get("sortKey")
        if selector.sort_key is not None and sort_key is not None and sort_key != selector.sort_key:
            raise CacheServiceError(
                f"Cache has {sort_key}, not the requested sort key {selector.sort_key}"
            )

        evaluated_height = _evaluated_height(body)
        if (
            selector.block_height is not None
            and evaluated_height is not None
            and evaluated_height < selector.block_height
        ):
            raise CacheServiceError(
                f"Cache is at block {evaluated_height}, behind requested {selector.block_height}"
            )

        return ContractState.from_state(
            contract_id, body["state"], sort_key=sort_key, source="cache"
        )


def _evaluated_height(body: Dict[str, Any]) -> Optional[int]:
    height = body.get("blockHeight")
    if height is None:
        eval_to = (body.get("evaluationOptions") or {}).get("evalTo") or {}
        height = eval_to.get("blockHeight")
    if isinstance(height, int) and not isinstance(height, bool):
        return height
    return None
