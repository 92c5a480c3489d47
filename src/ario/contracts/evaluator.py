"""
Deterministic local evaluation of a legacy contract's interaction log.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ario.contracts.handlers import ANT_HANDLERS, REGISTRY_HANDLERS, Handler
from ario.core.exceptions import ContractError
from ario.core.models import ContractDefinition, ContractState, EvaluationOptions, Interaction

logger = logging.getLogger(__name__)


class ContractEvaluator:
    """Folds interactions into state with a fixed handler registry.

    Interactions are stably sorted by sort key, so equal keys keep the order
    the log delivered them in. A rejected or unknown interaction leaves the
    state untouched and is recorded in ``ContractState.errors``.
    """

    def __init__(self, handlers: Mapping[str, Handler]) -> None:
        self._handlers = dict(handlers)

    @classmethod
    def for_registry(cls) -> "ContractEvaluator":
        return cls(REGISTRY_HANDLERS)

    @classmethod
    def for_ant(cls) -> "ContractEvaluator":
        return cls(ANT_HANDLERS)

    def evaluate(
        self,
        definition: ContractDefinition,
        interactions: Iterable[Interaction],
        selector: Optional[EvaluationOptions] = None,
    ) -> ContractState:
        ordered = sorted(interactions, key=lambda interaction: interaction.sort_key)
        state: Dict[str, Any] = copy.deepcopy(definition.initial_state)
        errors: List[Tuple[str, str]] = []
        last_sort_key: Optional[str] = None

        for interaction in ordered:
            if selector is not None and not interaction.within(selector):
                continue
            last_sort_key = interaction.sort_key
            handler = self._handlers.get(interaction.function or "")
            if handler is None:
                errors.append((interaction.id, f"Unknown function: {interaction.function!r}"))
                continue

            candidate = copy.deepcopy(state)
            try:
                handler(candidate, interaction)
            except (ContractError, KeyError, TypeError, ValueError) as e:
                errors.append((interaction.id, str(e)))
                logger.debug(
                    "Interaction rejected",
                    extra={
                        "contract_id": definition.contract_id,
                        "interaction_id": interaction.id,
                        "function": interaction.function,
                        "reason": str(e),
                    },
                )
                continue
            state = candidate

        return ContractState.from_state(
            definition.contract_id,
            state,
            sort_key=last_sort_key,
            source="replay",
            errors=errors,
        )
