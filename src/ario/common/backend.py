"""
Evaluation backend selection for the domain facades.

A facade is backed either by a remote process (``ProcessBacked``) or by a
legacy contract resolved through cache/replay (``ContractBacked``). The
choice is made once, at construction, by ``select_backend``; facades then
dispatch on the variant type and never re-inspect their configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from ario.contracts.evaluator import ContractEvaluator
from ario.contracts.resolver import ContractStateResolver
from ario.core.config import ClientConfig
from ario.core.exceptions import InvalidConfigurationError
from ario.core.models import EvaluationOptions, MessageResult, WriteOptions, prune_tags
from ario.core.token import Quantity, quantity_to_mio
from ario.process.client import ProcessClient
from ario.process.transport import ProcessTransport
from ario.wallet.signer import Credential, Signer, normalize_signer


@dataclass(frozen=True)
class ProcessBacked:
    """Reads and writes go through a process client."""

    process: ProcessClient

    @property
    def process_id(self) -> str:
        return self.process.process_id

    async def aclose(self) -> None:
        await self.process.aclose()


@dataclass(frozen=True)
class ContractBacked:
    """Reads resolve a legacy contract's state and project from it."""

    contract_id: str
    resolver: ContractStateResolver

    async def aclose(self) -> None:
        await self.resolver.aclose()


Backend = Union[ProcessBacked, ContractBacked]


def require_process(backend: Backend) -> ProcessClient:
    if not isinstance(backend, ProcessBacked):
        raise InvalidConfigurationError("This operation requires a process backend")
    return backend.process


def require_contract(backend: Backend) -> ContractBacked:
    if not isinstance(backend, ContractBacked):
        raise InvalidConfigurationError("This operation requires a legacy contract backend")
    return backend


def select_backend(
    *,
    process: Optional[ProcessClient] = None,
    process_id: Optional[str] = None,
    contract_id: Optional[str] = None,
    resolver: Optional[ContractStateResolver] = None,
    config: Optional[ClientConfig] = None,
    default_process_id: Optional[str] = None,
    transport: Optional[ProcessTransport] = None,
    evaluator_factory: Callable[[], ContractEvaluator] = ContractEvaluator.for_registry,
) -> Backend:
    """
    Decide the backend from which configuration fields are present.

    No I/O happens here; clients and resolvers open connections lazily.

    Args:
        process: An already built process client.
        process_id: Id of the process to bind a new client to.
        contract_id: Id of a legacy contract.
        resolver: Resolver for ``contract_id`` (built from ``config`` if omitted).
        config: Endpoints and retry policy for anything built here.
        default_process_id: Used when neither a process nor a contract is given.
        transport: Transport for a newly built process client.
        evaluator_factory: Handler set for a newly built resolver.

    Raises:
        InvalidConfigurationError: On empty, conflicting or missing configuration.
    """
    config = config or ClientConfig()

    for name, value in (("process_id", process_id), ("contract_id", contract_id)):
        if value is not None and (not isinstance(value, str) or not value.strip()):
            raise InvalidConfigurationError(f"{name} must be a non-empty string")

    if process is not None and process_id is not None:
        raise InvalidConfigurationError("Pass either process or process_id, not both")
    has_process = process is not None or process_id is not None
    if has_process and contract_id is not None:
        raise InvalidConfigurationError(
            "A facade is backed by a process or by a contract, not both"
        )
    if resolver is not None and contract_id is None:
        raise InvalidConfigurationError("resolver requires contract_id")

    if contract_id is not None:
        return ContractBacked(
            contract_id=contract_id,
            resolver=resolver or ContractStateResolver.from_config(config, evaluator_factory()),
        )
    if process is not None:
        return ProcessBacked(process)
    if process_id is not None:
        return ProcessBacked(ProcessClient.from_config(config, process_id, transport))
    if default_process_id:
        return ProcessBacked(ProcessClient.from_config(config, default_process_id, transport))
    raise InvalidConfigurationError("No process or contract configured")


Selector = Union[EvaluationOptions, Mapping[str, Any], None]


def as_selector(evaluation_options: Selector) -> EvaluationOptions:
    """Accept an ``EvaluationOptions``, a selector mapping or None (latest)."""
    if evaluation_options is None:
        return EvaluationOptions.latest()
    if isinstance(evaluation_options, EvaluationOptions):
        return evaluation_options.normalized()
    return EvaluationOptions.from_mapping(evaluation_options).normalized()


class BackendFacade:
    """Dispatch plumbing shared by the readable facades."""

    def __init__(self, backend: Backend) -> None:
        if not isinstance(backend, (ProcessBacked, ContractBacked)):
            raise InvalidConfigurationError(
                f"backend must be ProcessBacked or ContractBacked, got {type(backend).__name__}"
            )
        self.backend = backend

    async def _read(self, *tags: Tuple[str, Any]) -> Any:
        return await require_process(self.backend).read(prune_tags(tags))

    async def _state(self, evaluation_options: Selector = None) -> Dict[str, Any]:
        contract = require_contract(self.backend)
        snapshot = await contract.resolver.resolve(contract.contract_id, as_selector(evaluation_options))
        return snapshot.state

    def __repr__(self) -> str:
        if isinstance(self.backend, ProcessBacked):
            return f"{type(self).__name__}(process_id={self.backend.process_id!r})"
        return f"{type(self).__name__}(contract_id={self.backend.contract_id!r})"

    async def aclose(self) -> None:
        """Close the HTTP connections held by the backend."""
        await self.backend.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class WriteableMixin:
    """Signer ownership and tagged sends for the writeable facades."""

    backend: Backend

    def _bind_signer(self, signer: Credential) -> None:
        if not isinstance(self.backend, ProcessBacked):
            raise InvalidConfigurationError(
                "Writes require a process backend; legacy contracts are read-only"
            )
        self.signer: Signer = normalize_signer(signer)

    async def _send(
        self,
        tags: Iterable[Tuple[str, Any]],
        options: Optional[WriteOptions] = None,
        data: Any = None,
    ) -> MessageResult:
        message_tags = prune_tags(tags) + list(options.tags if options else ())
        return await require_process(self.backend).send(message_tags, self.signer, data)


def mio_quantity(qty: Quantity) -> int:
    try:
        return quantity_to_mio(qty)
    except ValueError as e:
        raise InvalidConfigurationError(str(e)) from e
