"""
Interaction handlers for the legacy contracts replayed locally.

A handler receives a private copy of the state and the interaction, mutates
the copy, and raises ``ContractError`` to reject the interaction. The caller
is always ``interaction.owner``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping

from ario.core.exceptions import ContractError
from ario.core.models import Interaction

Handler = Callable[[Dict[str, Any], Interaction], None]

SECONDS_PER_YEAR = 365 * 24 * 60 * 60
MAX_LEASE_YEARS = 5
PERMABUY_YEARS_MULTIPLIER = 5
DEFAULT_UNDERNAME_LIMIT = 10
MIN_TTL_SECONDS = 900
MAX_TTL_SECONDS = 2_592_000
TX_ID_LENGTH = 43

DEFAULT_REGISTRY_SETTINGS = {
    "minOperatorStake": 10_000,
    "minDelegatedStake": 100,
    "gatewayLeaveLength": 3600,
    "operatorStakeWithdrawLength": 3600,
    "delegatedStakeWithdrawLength": 3600,
}

_GATEWAY_SETTING_FIELDS = (
    "label",
    "fqdn",
    "port",
    "protocol",
    "properties",
    "note",
    "allowDelegatedStaking",
    "delegateRewardShareRatio",
    "minDelegatedStake",
    "autoStake",
)


# ==================== Validation helpers ====================


def _require_quantity(inputs: Mapping[str, Any], key: str = "qty") -> int:
    qty = inputs.get(key)
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ContractError(f"Invalid quantity: {qty!r} must be a positive integer")
    return qty


def _require_string(inputs: Mapping[str, Any], key: str) -> str:
    value = inputs.get(key)
    if not isinstance(value, str) or not value:
        raise ContractError(f"Invalid {key}: {value!r}")
    return value


def _debit(state: Dict[str, Any], address: str, qty: int) -> None:
    balances = state.setdefault("balances", {})
    balance = balances.get(address, 0)
    if balance < qty:
        raise ContractError(f"Insufficient balance: {balance} < {qty}")
    balances[address] = balance - qty


def _credit(state: Dict[str, Any], address: str, qty: int) -> None:
    balances = state.setdefault("balances", {})
    balances[address] = balances.get(address, 0) + qty


def _registry_setting(state: Mapping[str, Any], key: str) -> int:
    settings = (state.get("settings") or {}).get("registry") or {}
    return settings.get(key, DEFAULT_REGISTRY_SETTINGS[key])


def _gateway_of(state: Dict[str, Any], address: str) -> Dict[str, Any]:
    gateway = state.get("gateways", {}).get(address)
    if gateway is None:
        raise ContractError(f"No gateway registered for {address}")
    return gateway


def _record_fee(state: Mapping[str, Any], name: str) -> int:
    fees = state.get("fees") or {}
    fee = fees.get(str(len(name)))
    if fee is None:
        fee = fees.get(str(max((int(k) for k in fees if k.isdigit()), default=0)), 0)
    return int(fee)


# ==================== Network registry ====================


def transfer_tokens(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    target = _require_string(inputs, "target")
    qty = _require_quantity(inputs)
    if target == interaction.owner:
        raise ContractError("Invalid target specified")
    _debit(state, interaction.owner, qty)
    _credit(state, target, qty)


def buy_record(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    name = _require_string(inputs, "name").lower()
    process_id = inputs.get("processId") or inputs.get("contractTxId")
    if not isinstance(process_id, str) or not process_id:
        raise ContractError("Invalid processId")
    record_type = inputs.get("type", "lease")
    years = inputs.get("years", 1)

    records = state.setdefault("records", {})
    if name in records:
        raise ContractError(f"Name {name} is already registered")
    reserved = state.get("reserved", {}).get(name)
    if reserved is not None and reserved.get("target") != interaction.owner:
        raise ContractError(f"Name {name} is reserved")

    fee = _record_fee(state, name)
    record: Dict[str, Any] = {
        "processId": process_id,
        "type": record_type,
        "startTimestamp": interaction.block_timestamp,
        "undernames": DEFAULT_UNDERNAME_LIMIT,
    }
    if record_type == "lease":
        if isinstance(years, bool) or not isinstance(years, int) or not 1 <= years <= MAX_LEASE_YEARS:
            raise ContractError(f"Invalid years: {years!r}")
        cost = fee * years
        record["endTimestamp"] = interaction.block_timestamp + years * SECONDS_PER_YEAR
    elif record_type == "permabuy":
        cost = fee * PERMABUY_YEARS_MULTIPLIER
    else:
        raise ContractError(f"Invalid record type: {record_type!r}")

    _debit(state, interaction.owner, cost)
    record["purchasePrice"] = cost
    records[name] = record
    state.get("reserved", {}).pop(name, None)


def extend_record(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    name = _require_string(inputs, "name").lower()
    years = inputs.get("years")
    record = state.get("records", {}).get(name)
    if record is None:
        raise ContractError(f"Name {name} is not registered")
    if record.get("type") != "lease":
        raise ContractError(f"Name {name} is permanently owned and cannot be extended")
    if isinstance(years, bool) or not isinstance(years, int) or not 1 <= years <= MAX_LEASE_YEARS:
        raise ContractError(f"Invalid years: {years!r}")

    end = record.get("endTimestamp", interaction.block_timestamp)
    max_end = interaction.block_timestamp + MAX_LEASE_YEARS * SECONDS_PER_YEAR
    new_end = end + years * SECONDS_PER_YEAR
    if new_end > max_end:
        raise ContractError(f"Lease of {name} cannot exceed {MAX_LEASE_YEARS} years")

    _debit(state, interaction.owner, _record_fee(state, name) * years)
    record["endTimestamp"] = new_end


def increase_undername_count(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    name = _require_string(inputs, "name").lower()
    qty = _require_quantity(inputs)
    record = state.get("records", {}).get(name)
    if record is None:
        raise ContractError(f"Name {name} is not registered")
    undername_fee = int((state.get("fees") or {}).get("undername", 0))
    if undername_fee:
        _debit(state, interaction.owner, undername_fee * qty)
    record["undernames"] = record.get("undernames", DEFAULT_UNDERNAME_LIMIT) + qty


def join_network(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    caller = interaction.owner
    gateways = state.setdefault("gateways", {})
    if caller in gateways:
        raise ContractError("This wallet is already a gateway")
    qty = _require_quantity(inputs)
    min_stake = _registry_setting(state, "minOperatorStake")
    if qty < min_stake:
        raise ContractError(f"Operator stake must be at least {min_stake}")
    _require_string(inputs, "label")
    _require_string(inputs, "fqdn")

    _debit(state, caller, qty)
    settings = {key: inputs[key] for key in _GATEWAY_SETTING_FIELDS if key in inputs}
    settings.setdefault("port", 443)
    settings.setdefault("protocol", "https")
    settings.setdefault("allowDelegatedStaking", False)
    settings.setdefault("minDelegatedStake", _registry_setting(state, "minDelegatedStake"))
    gateways[caller] = {
        "operatorStake": qty,
        "totalDelegatedStake": 0,
        "vaults": {},
        "delegates": {},
        "settings": settings,
        "status": "joined",
        "start": interaction.block_height,
        "end": 0,
        "observerWallet": inputs.get("observerWallet") or inputs.get("observerAddress") or caller,
        "stats": {
            "passedConsecutiveEpochs": 0,
            "failedConsecutiveEpochs": 0,
            "totalEpochParticipationCount": 0,
            "passedEpochCount": 0,
            "failedEpochCount": 0,
            "observedEpochCount": 0,
            "prescribedEpochCount": 0,
        },
    }


def update_gateway_settings(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    gateway = _gateway_of(state, interaction.owner)
    if gateway.get("status") == "leaving":
        raise ContractError("Gateway is leaving the network")
    updates = {key: inputs[key] for key in _GATEWAY_SETTING_FIELDS if key in inputs}
    observer = inputs.get("observerWallet") or inputs.get("observerAddress")
    if not updates and observer is None:
        raise ContractError("No gateway settings to update")
    gateway["settings"].update(updates)
    if observer is not None:
        gateway["observerWallet"] = observer


def leave_network(state: Dict[str, Any], interaction: Interaction) -> None:
    gateway = _gateway_of(state, interaction.owner)
    if gateway.get("status") == "leaving":
        raise ContractError("Gateway is already leaving the network")
    end = interaction.block_height + _registry_setting(state, "gatewayLeaveLength")
    gateway["status"] = "leaving"
    gateway["end"] = end
    if gateway["operatorStake"]:
        gateway["vaults"][interaction.id] = {
            "balance": gateway["operatorStake"],
            "start": interaction.block_height,
            "end": end,
        }
        gateway["operatorStake"] = 0


def increase_operator_stake(state: Dict[str, Any], interaction: Interaction) -> None:
    qty = _require_quantity(interaction.input)
    gateway = _gateway_of(state, interaction.owner)
    if gateway.get("status") == "leaving":
        raise ContractError("Gateway is leaving the network")
    _debit(state, interaction.owner, qty)
    gateway["operatorStake"] += qty


def decrease_operator_stake(state: Dict[str, Any], interaction: Interaction) -> None:
    qty = _require_quantity(interaction.input)
    gateway = _gateway_of(state, interaction.owner)
    min_stake = _registry_setting(state, "minOperatorStake")
    if gateway["operatorStake"] - qty < min_stake:
        raise ContractError(f"Operator stake cannot drop below {min_stake}")
    gateway["operatorStake"] -= qty
    gateway["vaults"][interaction.id] = {
        "balance": qty,
        "start": interaction.block_height,
        "end": interaction.block_height + _registry_setting(state, "operatorStakeWithdrawLength"),
    }


def delegate_stake(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    target = _require_string(inputs, "target")
    qty = _require_quantity(inputs)
    gateway = _gateway_of(state, target)
    if target == interaction.owner:
        raise ContractError("Gateways cannot delegate to themselves")
    if not gateway["settings"].get("allowDelegatedStaking"):
        raise ContractError(f"Gateway {target} does not allow delegated staking")
    if gateway.get("status") == "leaving":
        raise ContractError(f"Gateway {target} is leaving the network")

    delegate = gateway["delegates"].get(interaction.owner)
    existing = delegate["delegatedStake"] if delegate else 0
    minimum = gateway["settings"].get("minDelegatedStake", _registry_setting(state, "minDelegatedStake"))
    if existing + qty < minimum:
        raise ContractError(f"Delegated stake must be at least {minimum}")

    _debit(state, interaction.owner, qty)
    if delegate is None:
        delegate = gateway["delegates"][interaction.owner] = {
            "delegatedStake": 0,
            "start": interaction.block_height,
            "vaults": {},
        }
    delegate["delegatedStake"] += qty
    gateway["totalDelegatedStake"] += qty


def decrease_delegate_stake(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    target = _require_string(inputs, "target")
    qty = _require_quantity(inputs)
    gateway = _gateway_of(state, target)
    delegate = gateway["delegates"].get(interaction.owner)
    if delegate is None:
        raise ContractError(f"{interaction.owner} has no stake delegated to {target}")
    remaining = delegate["delegatedStake"] - qty
    minimum = gateway["settings"].get("minDelegatedStake", _registry_setting(state, "minDelegatedStake"))
    if remaining < 0 or 0 < remaining < minimum:
        raise ContractError(f"Remaining delegated stake must be 0 or at least {minimum}")

    delegate["delegatedStake"] = remaining
    gateway["totalDelegatedStake"] -= qty
    delegate["vaults"][interaction.id] = {
        "balance": qty,
        "start": interaction.block_height,
        "end": interaction.block_height + _registry_setting(state, "delegatedStakeWithdrawLength"),
    }


def save_observations(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    report_tx_id = _require_string(inputs, "observerReportTxId")
    failed_gateways = inputs.get("failedGateways", [])
    if not isinstance(failed_gateways, list) or not all(isinstance(g, str) for g in failed_gateways):
        raise ContractError("failedGateways must be a list of addresses")

    caller = interaction.owner
    observer_gateway = None
    for address, gateway in state.get("gateways", {}).items():
        if gateway.get("observerWallet") == caller or address == caller:
            observer_gateway = address
            break
    if observer_gateway is None:
        raise ContractError(f"{caller} is not a registered observer")

    epoch = str((state.get("distributions") or {}).get("epochStartHeight", 0))
    observations = state.setdefault("observations", {}).setdefault(
        epoch, {"failureSummaries": {}, "reports": {}}
    )
    for failed in failed_gateways:
        if failed not in state.get("gateways", {}):
            continue
        observers: List[str] = observations["failureSummaries"].setdefault(failed, [])
        if observer_gateway not in observers:
            observers.append(observer_gateway)
    observations["reports"][observer_gateway] = report_tx_id


REGISTRY_HANDLERS: Dict[str, Handler] = {
    "transfer": transfer_tokens,
    "buyRecord": buy_record,
    "extendRecord": extend_record,
    "increaseUndernameCount": increase_undername_count,
    "joinNetwork": join_network,
    "updateGatewaySettings": update_gateway_settings,
    "leaveNetwork": leave_network,
    "increaseOperatorStake": increase_operator_stake,
    "decreaseOperatorStake": decrease_operator_stake,
    "delegateStake": delegate_stake,
    "decreaseDelegateStake": decrease_delegate_stake,
    "saveObservations": save_observations,
}


# ==================== Name-registry unit ====================


def _require_owner(state: Mapping[str, Any], caller: str) -> None:
    if state.get("owner") != caller:
        raise ContractError(f"{caller} is not the owner")


def _require_owner_or_controller(state: Mapping[str, Any], caller: str) -> None:
    if state.get("owner") != caller and caller not in (state.get("controllers") or []):
        raise ContractError(f"{caller} is not the owner or a controller")


def transfer_ant(state: Dict[str, Any], interaction: Interaction) -> None:
    target = _require_string(interaction.input, "target")
    _require_owner(state, interaction.owner)
    if target == interaction.owner:
        raise ContractError("Invalid target specified")
    state["owner"] = target
    state["balances"] = {target: 1}


def set_record(state: Dict[str, Any], interaction: Interaction) -> None:
    inputs = interaction.input
    _require_owner_or_controller(state, interaction.owner)
    sub_domain = _require_string(inputs, "subDomain").lower()
    transaction_id = _require_string(inputs, "transactionId")
    if len(transaction_id) != TX_ID_LENGTH:
        raise ContractError(f"Invalid transactionId: {transaction_id!r}")
    ttl = inputs.get("ttlSeconds", MIN_TTL_SECONDS)
    if isinstance(ttl, bool) or not isinstance(ttl, int) or not MIN_TTL_SECONDS <= ttl <= MAX_TTL_SECONDS:
        raise ContractError(f"Invalid ttlSeconds: {ttl!r}")
    state.setdefault("records", {})[sub_domain] = {
        "transactionId": transaction_id,
        "ttlSeconds": ttl,
    }


def remove_record(state: Dict[str, Any], interaction: Interaction) -> None:
    _require_owner_or_controller(state, interaction.owner)
    sub_domain = _require_string(interaction.input, "subDomain").lower()
    if sub_domain not in state.get("records", {}):
        raise ContractError(f"Record {sub_domain} does not exist")
    del state["records"][sub_domain]


def set_controller(state: Dict[str, Any], interaction: Interaction) -> None:
    _require_owner(state, interaction.owner)
    target = _require_string(interaction.input, "target")
    controllers = state.setdefault("controllers", [])
    if target in controllers:
        raise ContractError(f"{target} is already a controller")
    controllers.append(target)


def remove_controller(state: Dict[str, Any], interaction: Interaction) -> None:
    _require_owner(state, interaction.owner)
    target = _require_string(interaction.input, "target")
    controllers = state.setdefault("controllers", [])
    if target not in controllers:
        raise ContractError(f"{target} is not a controller")
    controllers.remove(target)


def set_name(state: Dict[str, Any], interaction: Interaction) -> None:
    _require_owner_or_controller(state, interaction.owner)
    state["name"] = _require_string(interaction.input, "name")


def set_ticker(state: Dict[str, Any], interaction: Interaction) -> None:
    _require_owner_or_controller(state, interaction.owner)
    state["ticker"] = _require_string(interaction.input, "ticker")


ANT_HANDLERS: Dict[str, Handler] = {
    "transfer": transfer_ant,
    "setRecord": set_record,
    "removeRecord": remove_record,
    "setController": set_controller,
    "removeController": remove_controller,
    "setName": set_name,
    "setTicker": set_ticker,
}
