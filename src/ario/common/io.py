"""
Network registry facades.

``IOReadable`` answers registry queries from either backend: a process
dry-run keyed by ``Action`` tags, or a projection over the legacy contract
state resolved at the requested point in time. ``IOWriteable`` adds signed
writes and is only available on a process backend.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional, Union

from ario.common.backend import (
    Backend,
    BackendFacade,
    ProcessBacked,
    Selector,
    WriteableMixin,
    as_selector,
    mio_quantity,
    select_backend,
)
from ario.contracts.evaluator import ContractEvaluator
from ario.contracts.resolver import ContractStateResolver
from ario.core.config import ClientConfig
from ario.core.constants import ACTION_TAG
from ario.core.exceptions import InvalidConfigurationError
from ario.core.models import MessageResult, WriteOptions
from ario.core.token import Quantity
from ario.process.client import ProcessClient
from ario.process.transport import ProcessTransport
from ario.wallet.signer import Credential

DEFAULT_EPOCH_BLOCK_LENGTH = 720
DEFAULT_EPOCH_DISTRIBUTION_DELAY = 15


def epoch_for_height(state: Dict[str, Any], block_height: int) -> Dict[str, Any]:
    """Epoch boundaries containing ``block_height`` from legacy registry state."""
    distributions = state.get("distributions") or {}
    zero = distributions.get("epochZeroStartHeight", 0)
    period = distributions.get("epochPeriod") or DEFAULT_EPOCH_BLOCK_LENGTH
    delay = distributions.get("epochDistributionDelay", DEFAULT_EPOCH_DISTRIBUTION_DELAY)
    if block_height < zero:
        raise InvalidConfigurationError(
            f"Block height {block_height} precedes the first epoch at {zero}"
        )
    index = (block_height - zero) // period
    start = zero + index * period
    end = start + period - 1
    return {
        "epochIndex": index,
        "epochZeroStartHeight": zero,
        "epochStartHeight": start,
        "epochEndHeight": end,
        "epochPeriod": period,
        "epochDistributionHeight": end + delay,
    }


class IO:
    """Entry point building the right network registry facade."""

    @staticmethod
    def init(
        *,
        process: Optional[ProcessClient] = None,
        process_id: Optional[str] = None,
        contract_id: Optional[str] = None,
        resolver: Optional[ContractStateResolver] = None,
        signer: Optional[Credential] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[ProcessTransport] = None,
    ) -> Union["IOReadable", "IOWriteable"]:
        """
        Build a readable facade, or a writeable one when ``signer`` is given.

        With neither a process nor a contract the configured default process
        id is used.

        Raises:
            InvalidConfigurationError: Conflicting configuration, or a signer
                combined with a legacy contract.
            SigningError: The signer credential is unusable.
        """
        config = config or ClientConfig()
        backend = select_backend(
            process=process,
            process_id=process_id,
            contract_id=contract_id,
            resolver=resolver,
            config=config,
            default_process_id=config.process_id,
            transport=transport,
            evaluator_factory=ContractEvaluator.for_registry,
        )
        if signer is not None:
            return IOWriteable(backend, signer)
        return IOReadable(backend)


class IOReadable(BackendFacade):
    """Read-only network registry facade."""

    async def get_state(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "State")) or {}
        return await self._state(evaluation_options)

    async def get_info(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Info")) or {}
        state = await self._state(evaluation_options)
        return {
            "name": state.get("name"),
            "ticker": state.get("ticker"),
            "owner": state.get("owner"),
        }

    async def get_balance(self, address: str, evaluation_options: Selector = None) -> int:
        """Balance in mIO; an address without an entry has a balance of 0."""
        if isinstance(self.backend, ProcessBacked):
            balance = await self._read((ACTION_TAG, "Balance"), ("Address", address))
        else:
            balances = (await self._state(evaluation_options)).get("balances") or {}
            balance = balances.get(address)
        return int(balance or 0)

    async def get_balances(self, evaluation_options: Selector = None) -> Dict[str, int]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Balances")) or {}
        return (await self._state(evaluation_options)).get("balances") or {}

    async def get_gateway(
        self, address: str, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Gateway"), ("Address", address))
        return ((await self._state(evaluation_options)).get("gateways") or {}).get(address)

    async def get_gateways(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Gateways")) or {}
        return (await self._state(evaluation_options)).get("gateways") or {}

    async def get_arns_record(
        self, name: str, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Record"), ("Name", name))
        return ((await self._state(evaluation_options)).get("records") or {}).get(name)

    async def get_arns_records(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Records")) or {}
        return (await self._state(evaluation_options)).get("records") or {}

    async def get_arns_reserved_name(
        self, name: str, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "ReservedName"), ("Name", name))
        return ((await self._state(evaluation_options)).get("reserved") or {}).get(name)

    async def get_arns_reserved_names(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "ReservedNames")) or {}
        return (await self._state(evaluation_options)).get("reserved") or {}

    async def get_epoch(
        self, block_height: int, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        """
        Epoch containing ``block_height``.

        On a legacy contract the state is resolved at that height; combining
        it with a different selector raises ``SelectorConflictError``.
        """
        selector = as_selector(evaluation_options).at_block_height(block_height)
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Epoch"), ("BlockHeight", block_height))
        state = await self._state(selector)
        epoch = epoch_for_height(state, block_height)
        epoch["distributions"] = self._distributions_for(state, epoch)
        return epoch

    async def get_current_epoch(self, evaluation_options: Selector = None) -> Optional[Dict[str, Any]]:
        selector = as_selector(evaluation_options)
        if isinstance(self.backend, ProcessBacked):
            if selector.block_height is not None:
                return await self._read((ACTION_TAG, "Epoch"), ("BlockHeight", selector.block_height))
            timestamp = selector.timestamp if selector.timestamp is not None else int(time.time() * 1000)
            return await self._read((ACTION_TAG, "Epoch"), ("Timestamp", timestamp))
        state = await self._state(selector)
        distributions = state.get("distributions") or {}
        return {
            key: distributions[key]
            for key in (
                "epochZeroStartHeight",
                "epochStartHeight",
                "epochEndHeight",
                "epochDistributionHeight",
                "nextDistributionHeight",
                "epochPeriod",
            )
            if key in distributions
        }

    async def get_prescribed_observers(self, evaluation_options: Selector = None) -> List[Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "PrescribedObservers")) or []
        state = await self._state(evaluation_options)
        observers = state.get("prescribedObservers") or {}
        if isinstance(observers, list):
            return observers
        epoch_start = (state.get("distributions") or {}).get("epochStartHeight", 0)
        return observers.get(str(epoch_start), [])

    async def get_observations(
        self, epoch: Optional[int] = None, evaluation_options: Selector = None
    ) -> Dict[str, Any]:
        """Observations by epoch start height, narrowed to ``epoch`` when given."""
        if isinstance(self.backend, ProcessBacked):
            observations = await self._read((ACTION_TAG, "Observations")) or {}
        else:
            observations = (await self._state(evaluation_options)).get("observations") or {}
        if epoch is None:
            return observations
        return {str(epoch): observations.get(str(epoch))}

    async def get_distributions(
        self, epoch: Optional[int] = None, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        """
        Reward distributions, for the epoch at height ``epoch`` when given.

        The epoch lookup reuses ``evaluation_options`` unchanged.
        """
        if epoch is not None:
            epoch_data = await self.get_epoch(epoch, evaluation_options)
            return (epoch_data or {}).get("distributions")
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Distributions"))
        return (await self._state(evaluation_options)).get("distributions") or {}

    @staticmethod
    def _distributions_for(state: Dict[str, Any], epoch: Dict[str, Any]) -> Dict[str, Any]:
        distributions = state.get("distributions") or {}
        if distributions.get("epochStartHeight") == epoch["epochStartHeight"]:
            return distributions
        return {}


class IOWriteable(WriteableMixin, IOReadable):
    """Network registry facade bound to one signer for its lifetime."""

    def __init__(self, backend: Backend, signer: Credential) -> None:
        super().__init__(backend)
        self._bind_signer(signer)

    async def transfer(
        self, target: str, qty: Quantity, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "Transfer"), ("Recipient", target), ("Quantity", mio_quantity(qty))],
            options,
        )

    async def join_network(
        self,
        *,
        qty: Quantity,
        label: str,
        fqdn: str,
        port: int = 443,
        protocol: str = "https",
        allow_delegated_staking: Optional[bool] = None,
        delegate_reward_share_ratio: Optional[int] = None,
        min_delegated_stake: Optional[Quantity] = None,
        note: Optional[str] = None,
        properties: Optional[str] = None,
        auto_stake: Optional[bool] = None,
        observer_address: Optional[str] = None,
        options: Optional[WriteOptions] = None,
    ) -> MessageResult:
        return await self._send(
            [
                (ACTION_TAG, "JoinNetwork"),
                ("Quantity", mio_quantity(qty)),
                ("AllowDelegatedStaking", allow_delegated_staking),
                ("DelegateRewardShareRatio", delegate_reward_share_ratio),
                ("FQDN", fqdn),
                ("Label", label),
                (
                    "MinDelegatedStake",
                    None if min_delegated_stake is None else mio_quantity(min_delegated_stake),
                ),
                ("Note", note),
                ("Port", port),
                ("Properties", properties),
                ("Protocol", protocol),
                ("AutoStake", auto_stake),
                ("ObserverAddress", observer_address),
            ],
            options,
        )

    async def leave_network(self, options: Optional[WriteOptions] = None) -> MessageResult:
        return await self._send([(ACTION_TAG, "LeaveNetwork")], options)

    async def update_gateway_settings(
        self,
        *,
        label: Optional[str] = None,
        note: Optional[str] = None,
        fqdn: Optional[str] = None,
        port: Optional[int] = None,
        properties: Optional[str] = None,
        protocol: Optional[str] = None,
        observer_address: Optional[str] = None,
        allow_delegated_staking: Optional[bool] = None,
        delegate_reward_share_ratio: Optional[int] = None,
        min_delegated_stake: Optional[Quantity] = None,
        auto_stake: Optional[bool] = None,
        options: Optional[WriteOptions] = None,
    ) -> MessageResult:
        """Update only the settings passed; omitted ones are left unchanged."""
        tags = [
            ("Label", label),
            ("Note", note),
            ("FQDN", fqdn),
            ("Port", port),
            ("Properties", properties),
            ("Protocol", protocol),
            ("ObserverAddress", observer_address),
            ("AllowDelegatedStaking", allow_delegated_staking),
            ("DelegateRewardShareRatio", delegate_reward_share_ratio),
            (
                "MinDelegatedStake",
                None if min_delegated_stake is None else mio_quantity(min_delegated_stake),
            ),
            ("AutoStake", auto_stake),
        ]
        if all(value is None for _, value in tags):
            raise InvalidConfigurationError("update_gateway_settings needs at least one setting")
        return await self._send([(ACTION_TAG, "UpdateGatewaySettings")] + tags, options)

    async def increase_operator_stake(
        self, qty: Quantity, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "IncreaseOperatorStake"), ("Quantity", mio_quantity(qty))], options
        )

    async def decrease_operator_stake(
        self, qty: Quantity, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "DecreaseOperatorStake"), ("Quantity", mio_quantity(qty))], options
        )

    async def increase_delegate_stake(
        self, target: str, qty: Quantity, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "DelegateStake"), ("Target", target), ("Quantity", mio_quantity(qty))],
            options,
        )

    async def decrease_delegate_stake(
        self, target: str, qty: Quantity, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [
                (ACTION_TAG, "DecreaseDelegateStake"),
                ("Target", target),
                ("Quantity", mio_quantity(qty)),
            ],
            options,
        )

    async def save_observations(
        self,
        report_tx_id: str,
        failed_gateways: Iterable[str],
        options: Optional[WriteOptions] = None,
    ) -> MessageResult:
        payload = {"observerReportTxId": report_tx_id, "failedGateways": list(failed_gateways)}
        return await self._send([(ACTION_TAG, "SaveObservations")], options, data=payload)

    async def extend_lease(
        self, name: str, years: int, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        if isinstance(years, bool) or not isinstance(years, int) or years < 1:
            raise InvalidConfigurationError("years must be a positive integer")
        return await self._send(
            [(ACTION_TAG, "ExtendLease"), ("Name", name), ("Years", years)], options
        )

    async def increase_undername_limit(
        self, name: str, qty: int, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            raise InvalidConfigurationError("qty must be a positive integer")
        return await self._send(
            [(ACTION_TAG, "IncreaseUndernameLimit"), ("Name", name), ("Quantity", qty)], options
        )
