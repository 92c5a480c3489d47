"""
Name-registry unit (ANT) facades.

There is no library default for a unit: it must be addressed by its own
process id or legacy contract id.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from ario.common.backend import (
    Backend,
    BackendFacade,
    ProcessBacked,
    Selector,
    WriteableMixin,
    select_backend,
)
from ario.contracts.evaluator import ContractEvaluator
from ario.contracts.resolver import ContractStateResolver
from ario.core.config import ClientConfig
from ario.core.constants import ACTION_TAG
from ario.core.exceptions import InvalidConfigurationError
from ario.core.models import MessageResult, WriteOptions
from ario.process.client import ProcessClient
from ario.process.transport import ProcessTransport
from ario.wallet.signer import Credential

MIN_TTL_SECONDS = 900
MAX_TTL_SECONDS = 2_592_000


class ANT:
    """Entry point building the right name-registry unit facade."""

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
    ) -> Union["ANTReadable", "ANTWriteable"]:
        """
        Build a readable facade, or a writeable one when ``signer`` is given.

        Raises:
            InvalidConfigurationError: Neither or both of a process and a
                contract, or a signer combined with a legacy contract.
        """
        backend = select_backend(
            process=process,
            process_id=process_id,
            contract_id=contract_id,
            resolver=resolver,
            config=config,
            default_process_id=None,
            transport=transport,
            evaluator_factory=ContractEvaluator.for_ant,
        )
        if signer is not None:
            return ANTWriteable(backend, signer)
        return ANTReadable(backend)


class ANTReadable(BackendFacade):
    """Read-only name-registry unit facade."""

    async def get_state(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "State")) or {}
        return await self._state(evaluation_options)

    async def get_info(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        """Name, ticker and owner of the unit."""
        if isinstance(self.backend, ProcessBacked):
            info = await self._read((ACTION_TAG, "Info")) or {}
            return {
                "name": info.get("Name", info.get("name")),
                "ticker": info.get("Ticker", info.get("ticker")),
                "owner": info.get("Owner", info.get("owner")),
            }
        state = await self._state(evaluation_options)
        return {"name": state.get("name"), "ticker": state.get("ticker"), "owner": state.get("owner")}

    async def get_record(
        self, undername: str, evaluation_options: Selector = None
    ) -> Optional[Dict[str, Any]]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Record"), ("Sub-Domain", undername))
        return ((await self._state(evaluation_options)).get("records") or {}).get(undername)

    async def get_records(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Records")) or {}
        return (await self._state(evaluation_options)).get("records") or {}

    async def get_owner(self, evaluation_options: Selector = None) -> Optional[str]:
        return (await self.get_info(evaluation_options)).get("owner")

    async def get_controllers(self, evaluation_options: Selector = None) -> List[str]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Controllers")) or []
        return (await self._state(evaluation_options)).get("controllers") or []

    async def get_name(self, evaluation_options: Selector = None) -> Optional[str]:
        return (await self.get_info(evaluation_options)).get("name")

    async def get_ticker(self, evaluation_options: Selector = None) -> Optional[str]:
        return (await self.get_info(evaluation_options)).get("ticker")

    async def get_balance(self, address: str, evaluation_options: Selector = None) -> int:
        """Balance of ``address``; missing entries count as 0."""
        if isinstance(self.backend, ProcessBacked):
            balance = await self._read((ACTION_TAG, "Balance"), ("Recipient", address))
        else:
            balance = ((await self._state(evaluation_options)).get("balances") or {}).get(address)
        return int(balance or 0)

    async def get_balances(self, evaluation_options: Selector = None) -> Dict[str, int]:
        if isinstance(self.backend, ProcessBacked):
            return await self._read((ACTION_TAG, "Balances")) or {}
        return (await self._state(evaluation_options)).get("balances") or {}


class ANTWriteable(WriteableMixin, ANTReadable):
    """Name-registry unit facade bound to one signer for its lifetime."""

    def __init__(self, backend: Backend, signer: Credential) -> None:
        super().__init__(backend)
        self._bind_signer(signer)

    async def transfer(self, target: str, options: Optional[WriteOptions] = None) -> MessageResult:
        return await self._send([(ACTION_TAG, "Transfer"), ("Recipient", target)], options)

    async def set_controller(
        self, controller: str, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "Add-Controller"), ("Controller", controller)], options
        )

    async def remove_controller(
        self, controller: str, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send(
            [(ACTION_TAG, "Remove-Controller"), ("Controller", controller)], options
        )

    async def set_record(
        self,
        undername: str,
        transaction_id: str,
        ttl_seconds: int = MIN_TTL_SECONDS,
        options: Optional[WriteOptions] = None,
    ) -> MessageResult:
        if not MIN_TTL_SECONDS <= ttl_seconds <= MAX_TTL_SECONDS:
            raise InvalidConfigurationError(
                f"ttl_seconds must be between {MIN_TTL_SECONDS} and {MAX_TTL_SECONDS}"
            )
        return await self._send(
            [
                (ACTION_TAG, "Set-Record"),
                ("Sub-Domain", undername),
                ("Transaction-Id", transaction_id),
                ("TTL-Seconds", ttl_seconds),
            ],
            options,
        )

    async def remove_record(
        self, undername: str, options: Optional[WriteOptions] = None
    ) -> MessageResult:
        return await self._send([(ACTION_TAG, "Remove-Record"), ("Sub-Domain", undername)], options)

    async def set_name(self, name: str, options: Optional[WriteOptions] = None) -> MessageResult:
        return await self._send([(ACTION_TAG, "Set-Name"), ("Name", name)], options)

    async def set_ticker(self, ticker: str, options: Optional[WriteOptions] = None) -> MessageResult:
        return await self._send([(ACTION_TAG, "Set-Ticker"), ("Ticker", ticker)], options)
