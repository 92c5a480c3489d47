"""
AR.IO network client constants.

Documented defaults for the network registry process, the legacy registry
contract and the public services the client talks to. Facades never read
these directly; they arrive through ``ClientConfig``.
"""

from __future__ import annotations

# Network registry process on the devnet (message-passing backend)
IO_DEVNET_PROCESS_ID = "GaQrvEMKBpkjofgnBi_B3IgIDmY_XYelVLB6GcRGrHc"
DEFAULT_PROCESS_ID = IO_DEVNET_PROCESS_ID

# Legacy registry contract on the testnet (log-replay backend)
ARNS_TESTNET_REGISTRY_TX = "bLAgYxAdX2Ry-nt6aH2ixgvJXbpsEYm28NgJgyqfs-U"

DEFAULT_CU_URL = "https://cu.ao-testnet.xyz"
DEFAULT_MU_URL = "https://mu.ao-testnet.xyz"
DEFAULT_CACHE_URL = "https://api.arns.app/v1"
DEFAULT_GATEWAY_URL = "https://arweave.net"

DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_DELAY = 0.5
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Shared ceiling on in-flight requests issued by batch operations
BATCH_CONCURRENCY_LIMIT = 50

# Denomination
MIO_PER_IO = 1_000_000

# Tag names the backends route on
ACTION_TAG = "Action"
SMARTWEAVE_APP_NAME = "SmartWeaveAction"
INIT_STATE_TAG = "Init-State"
INPUT_TAG = "Input"
CONTRACT_TAG = "Contract"

# Interactions fetched per GraphQL page during replay
GRAPHQL_PAGE_SIZE = 100

# Fixed middle segment of a layer-one SmartWeave sort key
SORT_KEY_SEQUENCE_PAD = "0" * 13
