"""
Discovery of name-registry unit processes owned or controlled by a wallet.

Every per-process lookup runs under one limiter shared by the whole
process, so at most ``BATCH_CONCURRENCY_LIMIT`` lookups are in flight at
once regardless of how many discoveries run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Tuple

from ario.common.ant import ANT, ANTReadable
from ario.common.io import IO, IOReadable
from ario.core.config import ClientConfig
from ario.core.constants import BATCH_CONCURRENCY_LIMIT
from ario.process.transport import HttpProcessTransport

logger = logging.getLogger(__name__)

AntFactory = Callable[[str], ANTReadable]

_limiters: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = (
    weakref.WeakKeyDictionary()
)


def shared_limiter() -> asyncio.Semaphore:
    """The process-wide lookup limiter for the running event loop."""
    loop = asyncio.get_running_loop()
    limiter = _limiters.get(loop)
    if limiter is None:
        limiter = _limiters[loop] = asyncio.Semaphore(BATCH_CONCURRENCY_LIMIT)
    return limiter


@dataclass(frozen=True)
class DiscoveryEvent:
    """One discovery result: an owned process, or a lookup that failed."""

    kind: str
    process_id: str
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "processId": self.process_id, "message": self.message}


async def _registry_process_ids(contract: IOReadable) -> List[str]:
    records = await contract.get_arns_records()
    process_ids = (record.get("processId") for record in records.values() if isinstance(record, dict))
    return list(dict.fromkeys(pid for pid in process_ids if pid))


async def _check_process(
    process_id: str, address: str, ant_factory: AntFactory
) -> Tuple[bool, List[str]]:
    errors: List[str] = []
    async with shared_limiter():
        try:
            ant = ant_factory(process_id)
        except Exception as e:
            return False, [f"Error building client for process {process_id}: {e}"]
        owner, controllers = await asyncio.gather(
            ant.get_owner(), ant.get_controllers(), return_exceptions=True
        )
    if isinstance(owner, Exception):
        errors.append(f"Error getting owner for process {process_id}: {owner}")
        owner = None
    if isinstance(controllers, Exception):
        errors.append(f"Error getting controllers for process {process_id}: {controllers}")
        controllers = []
    return owner == address or address in (controllers or []), errors


def _shared_transport(config: Optional[ClientConfig]) -> HttpProcessTransport:
    config = config or ClientConfig()
    return HttpProcessTransport(cu_url=config.cu_url, mu_url=config.mu_url, timeout=config.http_timeout)


def _default_factory(config: Optional[ClientConfig], transport: HttpProcessTransport) -> AntFactory:
    def factory(process_id: str) -> ANTReadable:
        return ANT.init(process_id=process_id, config=config, transport=transport)

    return factory


async def get_ant_processes_owned_by_wallet(
    address: str,
    contract: Optional[IOReadable] = None,
    *,
    ant_factory: Optional[AntFactory] = None,
    config: Optional[ClientConfig] = None,
) -> List[str]:
    """
    Process ids from the registry whose unit is owned or controlled by ``address``.

    A unit whose owner and controllers cannot be read counts as not owned.
    """
    owns_contract = contract is None
    contract = contract or IO.init(config=config)
    transport = None
    if ant_factory is None:
        transport = _shared_transport(config)
        ant_factory = _default_factory(config, transport)
    try:
        process_ids = await _registry_process_ids(contract)
        results = await asyncio.gather(
            *(_check_process(process_id, address, ant_factory) for process_id in process_ids)
        )
    finally:
        if transport is not None:
            await transport.aclose()
        if owns_contract:
            await contract.aclose()

    owned = []
    for process_id, (is_owned, errors) in zip(process_ids, results):
        for error in errors:
            logger.warning(error, extra={"process_id": process_id})
        if is_owned:
            owned.append(process_id)
    logger.debug(
        "Discovered owned processes",
        extra={"address": address, "checked": len(process_ids), "owned": len(owned)},
    )
    return sorted(set(owned))


_DONE = object()


class ProcessDiscovery:
    """Streams discovery events through a bounded queue as lookups finish."""

    def __init__(
        self,
        contract: Optional[IOReadable] = None,
        *,
        ant_factory: Optional[AntFactory] = None,
        config: Optional[ClientConfig] = None,
    ) -> None:
        self._owns_contract = contract is None
        self.contract = contract or IO.init(config=config)
        self._transport: Optional[HttpProcessTransport] = None
        if ant_factory is None:
            self._transport = _shared_transport(config)
            ant_factory = _default_factory(config, self._transport)
        self.ant_factory = ant_factory

    async def aclose(self) -> None:
        """Close the connections this discovery opened; injected clients stay open."""
        if self._transport is not None:
            await self._transport.aclose()
        if self._owns_contract:
            await self.contract.aclose()

    async def __aenter__(self) -> "ProcessDiscovery":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def stream(self, address: str, max_buffer: int = 100) -> AsyncIterator[DiscoveryEvent]:
        """
        Yield ``DiscoveryEvent`` items until every registry process is checked.

        The producer blocks while ``max_buffer`` events are unconsumed. A
        failure to read the registry itself is raised to the consumer.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffer)

        async def check(process_id: str) -> None:
            owned, errors = await _check_process(process_id, address, self.ant_factory)
            for error in errors:
                await queue.put(DiscoveryEvent("error", process_id, error))
            if owned:
                await queue.put(DiscoveryEvent("process", process_id))

        async def produce() -> None:
            try:
                process_ids = await _registry_process_ids(self.contract)
                await asyncio.gather(*(check(process_id) for process_id in process_ids))
            except Exception as e:
                await queue.put(e)
                return
            await queue.put(_DONE)

        producer = asyncio.ensure_future(produce())
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
