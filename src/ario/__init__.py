"""
AR.IO - client library and CLI for the AR.IO network

Typed read/write access to the network registry and to name-registry
units, over either evaluation backend:
- Process: signed, tagged messages to a remote actor process
- Legacy contract: cached or locally replayed contract state
"""

from ario.common.ant import ANT, ANTReadable, ANTWriteable
from ario.common.backend import ContractBacked, ProcessBacked, select_backend
from ario.common.discovery import (
    DiscoveryEvent,
    ProcessDiscovery,
    get_ant_processes_owned_by_wallet,
)
from ario.common.io import IO, IOReadable, IOWriteable
from ario.contracts.resolver import ContractStateResolver
from ario.core.config import ClientConfig
from ario.core.constants import DEFAULT_PROCESS_ID
from ario.core.exceptions import (
    ARIOError,
    CancelledError,
    ContractUnavailableError,
    DeliveryError,
    InvalidConfigurationError,
    InvalidTagsError,
    ProcessError,
    ResultTimeoutError,
    SelectorConflictError,
    SigningError,
)
from ario.core.models import (
    ContractState,
    EvaluationOptions,
    MessageResult,
    RetryPolicy,
    Tag,
    WriteOptions,
)
from ario.core.token import IOToken, mIOToken
from ario.process.client import ProcessClient
from ario.wallet.signer import ArweaveSigner, Secp256k1Signer, create_ao_signer

__version__ = "1.0.0"

__all__ = [
    "ANT",
    "ANTReadable",
    "ANTWriteable",
    "ARIOError",
    "ArweaveSigner",
    "CancelledError",
    "ClientConfig",
    "ContractBacked",
    "ContractState",
    "ContractStateResolver",
    "ContractUnavailableError",
    "DEFAULT_PROCESS_ID",
    "DeliveryError",
    "DiscoveryEvent",
    "EvaluationOptions",
    "IO",
    "IOReadable",
    "IOToken",
    "IOWriteable",
    "InvalidConfigurationError",
    "InvalidTagsError",
    "MessageResult",
    "ProcessBacked",
    "ProcessClient",
    "ProcessDiscovery",
    "ProcessError",
    "ResultTimeoutError",
    "RetryPolicy",
    "Secp256k1Signer",
    "SelectorConflictError",
    "SigningError",
    "Tag",
    "WriteOptions",
    "create_ao_signer",
    "get_ant_processes_owned_by_wallet",
    "mIOToken",
    "select_backend",
]
