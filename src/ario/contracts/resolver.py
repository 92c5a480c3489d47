"""
Contract state resolver for the legacy contract backend.

Prefers the cache service and falls back to local replay of the interaction
log when the cache is unreachable, malformed or behind the requested point
in time. Resolved snapshots are kept per ``(contract_id, selector)`` for the
lifetime of the resolver; "latest" is never kept.

The snapshot dict is touched without locking, which relies on the single
threaded event loop. Share a resolver across threads only behind a lock.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from ario.contracts.cache import ContractCacheClient
from ario.contracts.evaluator import ContractEvaluator
from ario.contracts.interactions import GatewayInteractionSource, InteractionSource
from ario.core.config import ClientConfig
from ario.core.exceptions import (
    CacheServiceError,
    ContractUnavailableError,
    InvalidConfigurationError,
    ReplayError,
)
from ario.core.models import ContractState, EvaluationOptions

logger = logging.getLogger(__name__)

SnapshotKey = Tuple[str, Tuple]


class ContractStateResolver:
    """Resolves ``ContractState`` snapshots by selector."""

    def __init__(
        self,
        evaluator: ContractEvaluator,
        cache: Optional[ContractCacheClient] = None,
        source: Optional[InteractionSource] = None,
    ) -> None:
        if cache is None and source is None:
            raise InvalidConfigurationError("A resolver needs a cache service or an interaction source")
        self.evaluator = evaluator
        self.cache = cache
        self.source = source
        self._snapshots: Dict[SnapshotKey, ContractState] = {}

    @classmethod
    def from_config(
        cls, config: ClientConfig, evaluator: Optional[ContractEvaluator] = None
    ) -> "ContractStateResolver":
        return cls(
            evaluator=evaluator or ContractEvaluator.for_registry(),
            cache=ContractCacheClient(config.cache_url, timeout=config.http_timeout),
            source=GatewayInteractionSource(config.gateway_url, timeout=config.http_timeout),
        )

    async def aclose(self) -> None:
        for collaborator in (self.cache, self.source):
            close = getattr(collaborator, "aclose", None)
            if close is not None:
                await close()

    def clear_cache(self) -> None:
        self._snapshots.clear()

    def cached_keys(self):
        return list(self._snapshots)

    async def resolve(
        self,
        contract_id: str,
        evaluation_options: Optional[EvaluationOptions] = None,
    ) -> ContractState:
        """
        Resolve the state of ``contract_id`` at the selected point in time.

        Raises:
            SelectorConflictError: More than one selector field is set.
            ContractUnavailableError: Both the cache and local replay failed.
        """
        if not contract_id:
            raise InvalidConfigurationError("contract_id is required")
        selector = (evaluation_options or EvaluationOptions.latest()).normalized()
        key: SnapshotKey = (contract_id, selector.cache_key())
        extra = {"contract_id": contract_id, **selector.as_query_params()}

        if not selector.is_latest and key in self._snapshots:
            logger.debug("Snapshot cache hit", extra=extra)
            return self._snapshots[key]

        cache_error: Optional[Exception] = None
        state: Optional[ContractState] = None
        if self.cache is not None:
            try:
                state = await self.cache.fetch_state(contract_id, selector)
            except CacheServiceError as e:
                cache_error = e
                logger.warning("Cache service unavailable, replaying locally: %s", e, extra=extra)

        if state is None:
            state = await self._replay(contract_id, selector, cache_error)

        if not selector.is_latest:
            self._snapshots[key] = state
        return state

    async def _replay(
        self,
        contract_id: str,
        selector: EvaluationOptions,
        cache_error: Optional[Exception],
    ) -> ContractState:
        extra = {"contract_id": contract_id, **selector.as_query_params()}
        if self.source is None:
            logger.error("No interaction source to replay from", extra=extra)
            raise ContractUnavailableError(
                contract_id, cache_error, ReplayError("No interaction source configured")
            )
        try:
            definition = await self.source.fetch_contract(contract_id)
            interactions = await self.source.fetch_interactions(contract_id, selector)
        except ReplayError as e:
            logger.error("Contract state unavailable", extra={**extra, "replay_error": str(e)})
            raise ContractUnavailableError(contract_id, cache_error, e) from e

        state = self.evaluator.evaluate(definition, interactions, selector)
        logger.info(
            "Replayed contract state",
            extra={**extra, "interactions": len(interactions), "rejected": len(state.errors)},
        )
        return state
