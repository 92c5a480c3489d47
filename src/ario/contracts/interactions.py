"""
Interaction log sources for local replay of legacy contracts.

``GatewayInteractionSource`` pages the gateway GraphQL endpoint for the
contract's SmartWeave interactions in block order and derives their sort
keys; ``InMemoryInteractionSource`` serves fixed logs (tests, offline use).
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import httpx

from ario.core.constants import (
    CONTRACT_TAG,
    DEFAULT_GATEWAY_URL,
    DEFAULT_HTTP_TIMEOUT,
    GRAPHQL_PAGE_SIZE,
    INIT_STATE_TAG,
    INPUT_TAG,
    SMARTWEAVE_APP_NAME,
    SORT_KEY_SEQUENCE_PAD,
)
from ario.core.exceptions import ReplayError
from ario.core.models import ContractDefinition, EvaluationOptions, Interaction

logger = logging.getLogger(__name__)


def compute_sort_key(block_height: int, block_id: str, transaction_id: str) -> str:
    """Layer-one SmartWeave sort key: padded height, fixed sequence, hash of block+tx."""
    digest = hashlib.sha256(f"{block_id}{transaction_id}".encode("utf-8")).hexdigest()
    return f"{block_height:012d},{SORT_KEY_SEQUENCE_PAD},{digest}"


class InteractionSource(Protocol):
    async def fetch_contract(self, contract_id: str) -> ContractDefinition:
        ...

    async def fetch_interactions(
        self, contract_id: str, selector: EvaluationOptions
    ) -> List[Interaction]:
        ...


class InMemoryInteractionSource:
    """Serves contract definitions and logs held in memory, in insertion order."""

    def __init__(
        self,
        definitions: Optional[Mapping[str, ContractDefinition]] = None,
        interactions: Optional[Mapping[str, Iterable[Interaction]]] = None,
    ) -> None:
        self._definitions: Dict[str, ContractDefinition] = dict(definitions or {})
        self._interactions: Dict[str, List[Interaction]] = {
            key: list(value) for key, value in (interactions or {}).items()
        }

    def append(self, contract_id: str, interaction: Interaction) -> None:
        self._interactions.setdefault(contract_id, []).append(interaction)

    async def fetch_contract(self, contract_id: str) -> ContractDefinition:
        try:
            return self._definitions[contract_id]
        except KeyError:
            raise ReplayError(f"Unknown contract {contract_id}") from None

    async def fetch_interactions(
        self, contract_id: str, selector: EvaluationOptions
    ) -> List[Interaction]:
        return [i for i in self._interactions.get(contract_id, []) if i.within(selector)]


_INTERACTIONS_QUERY = """
query($tags: [TagFilter!], $after: String, $first: Int%(block_var)s) {
  transactions(tags: $tags, after: $after, first: $first, sort: HEIGHT_ASC%(block_arg)s) {
    pageInfo { hasNextPage }
    edges {
      cursor
      node {
        id
        owner { address }
        tags { name value }
        block { height id timestamp }
      }
    }
  }
}
"""

_CONTRACT_QUERY = """
query($id: ID!) {
  transaction(id: $id) {
    id
    owner { address }
    tags { name value }
  }
}
"""


class GatewayInteractionSource:
    """Reads contract definitions and interaction logs from an Arweave gateway."""

    def __init__(
        self,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        page_size: int = GRAPHQL_PAGE_SIZE,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.gateway_url}/graphql"
        try:
            response = await self._get_client().post(url, json={"query": query, "variables": variables})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ReplayError(f"Gateway GraphQL request failed: {e}") from e
        except ValueError as e:
            raise ReplayError("Gateway GraphQL returned malformed JSON") from e
        if not isinstance(body, dict):
            raise ReplayError("Gateway GraphQL response is not an object")
        if body.get("errors"):
            raise ReplayError(f"Gateway GraphQL errors: {body['errors']}")
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise ReplayError("Gateway GraphQL data is not an object")
        return data

    async def fetch_contract(self, contract_id: str) -> ContractDefinition:
        data = await self._graphql(_CONTRACT_QUERY, {"id": contract_id})
        node = data.get("transaction")
        if not node:
            raise ReplayError(f"Contract transaction {contract_id} not found")

        try:
            tags = {tag["name"]: tag["value"] for tag in node.get("tags") or []}
            owner = (node.get("owner") or {}).get("address")
        except (AttributeError, KeyError, TypeError) as e:
            raise ReplayError(f"Malformed contract transaction {contract_id}: {e!r}") from e
        if INIT_STATE_TAG in tags:
            raw_state = tags[INIT_STATE_TAG]
        else:
            url = f"{self.gateway_url}/{contract_id}"
            try:
                response = await self._get_client().get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise ReplayError(f"Could not fetch initial state of {contract_id}: {e}") from e
            raw_state = response.text

        try:
            initial_state = json.loads(raw_state)
        except (TypeError, ValueError) as e:
            raise ReplayError(f"Initial state of {contract_id} is not JSON") from e
        if not isinstance(initial_state, dict):
            raise ReplayError(f"Initial state of {contract_id} is not an object")
        return ContractDefinition(contract_id=contract_id, initial_state=initial_state, owner=owner)

    async def fetch_interactions(
        self, contract_id: str, selector: EvaluationOptions
    ) -> List[Interaction]:
        if selector.block_height is not None:
            query = _INTERACTIONS_QUERY % {"block_var": ", $max: Int", "block_arg": ", block: {max: $max}"}
        else:
            query = _INTERACTIONS_QUERY % {"block_var": "", "block_arg": ""}

        variables: Dict[str, Any] = {
            "tags": [
                {"name": "App-Name", "values": [SMARTWEAVE_APP_NAME]},
                {"name": CONTRACT_TAG, "values": [contract_id]},
            ],
            "first": self.page_size,
            "after": None,
        }
        if selector.block_height is not None:
            variables["max"] = selector.block_height

        interactions: List[Interaction] = []
        while True:
            data = await self._graphql(query, variables)
            try:
                page = data.get("transactions") or {}
                edges = page.get("edges") or []
                for edge in edges:
                    interaction = self._to_interaction(edge.get("node") or {})
                    if interaction is not None and interaction.within(selector):
                        interactions.append(interaction)
                if not (page.get("pageInfo") or {}).get("hasNextPage") or not edges:
                    break
                variables["after"] = edges[-1]["cursor"]
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ReplayError(f"Malformed interaction page for {contract_id}: {e!r}") from e

        logger.debug(
            "Fetched interaction log",
            extra={"contract_id": contract_id, "count": len(interactions), **selector.as_query_params()},
        )
        return interactions

    @staticmethod
    def _to_interaction(node: Dict[str, Any]) -> Optional[Interaction]:
        block = node.get("block")
        if not block:
            # Pending transactions have no place in the total order yet
            return None
        tags = {tag["name"]: tag["value"] for tag in node.get("tags") or []}
        try:
            parsed_input = json.loads(tags.get(INPUT_TAG, "{}"))
        except ValueError:
            parsed_input = {}
        if not isinstance(parsed_input, dict):
            parsed_input = {}
        return Interaction(
            id=node["id"],
            owner=(node.get("owner") or {}).get("address", ""),
            block_height=int(block["height"]),
            block_timestamp=int(block["timestamp"]),
            block_id=block["id"],
            sort_key=compute_sort_key(int(block["height"]), block["id"], node["id"]),
            input=parsed_input,
        )
