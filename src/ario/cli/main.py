#!/usr/bin/env python3
"""
AR.IO command line interface.

Every command prints one JSON object to stdout. Errors go to stderr and
exit with status 1, leaving stdout empty.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import click
from rich.console import Console
from rich.markup import escape

from ario.common.ant import ANT
from ario.common.backend import BackendFacade, ProcessBacked
from ario.common.discovery import get_ant_processes_owned_by_wallet
from ario.common.io import IO, IOReadable, IOWriteable
from ario.core.config import ClientConfig
from ario.core.constants import ARNS_TESTNET_REGISTRY_TX
from ario.core.exceptions import ARIOError, InvalidConfigurationError, get_error_context
from ario.core.logging_config import setup_logging
from ario.core.models import EvaluationOptions
from ario.core.token import IOToken, format_io_with_commas, mIOToken
from ario.wallet.signer import Credential

logger = logging.getLogger(__name__)

# Human-facing output goes to stderr so stdout only carries JSON
console = Console(stderr=True)

FacadeT = TypeVar("FacadeT", bound=BackendFacade)


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    context = get_error_context(exc)
    logger.error(
        "CLI error: %s",
        exc,
        exc_info=logger.isEnabledFor(logging.DEBUG),
        extra={key: value for key, value in context.items() if key != "details"},
    )
    message = context["error_message"] or context["error_type"]
    if not isinstance(exc, (ARIOError, click.ClickException)):
        message = f"{context['error_type']}: {message}"
    console.print(f"[bold red]Error:[/] {escape(message)}")
    sys.exit(exit_code)


@dataclass
class CliState:
    config: ClientConfig
    process_id: Optional[str]
    contract_id: Optional[str]
    wallet_file: Optional[Path]
    private_key: Optional[str]
    opened: List[BackendFacade] = field(default_factory=list)

    def track(self, facade: FacadeT) -> FacadeT:
        self.opened.append(facade)
        return facade

    async def aclose(self) -> None:
        while self.opened:
            await self.opened.pop().aclose()

    def credential(self) -> Credential:
        if self.wallet_file is not None:
            try:
                with self.wallet_file.open("r", encoding="utf-8") as handle:
                    return json.load(handle)
            except (OSError, ValueError) as exc:
                raise InvalidConfigurationError(
                    f"Cannot read wallet file {self.wallet_file}: {exc}"
                ) from exc
        if self.private_key:
            return self.private_key
        raise InvalidConfigurationError("This command requires --wallet-file or --private-key")

    def io(self) -> IOReadable:
        return self.track(
            IO.init(process_id=self.process_id, contract_id=self.contract_id, config=self.config)
        )

    def io_writeable(self) -> IOWriteable:
        return self.track(
            IO.init(
                process_id=self.process_id,
                contract_id=self.contract_id,
                signer=self.credential(),
                config=self.config,
            )
        )


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _execute(state: CliState, operation: Callable[[], Awaitable[Any]]) -> None:
    """Run one async operation and print its result, or fail with exit status 1.

    Facades opened by the operation are closed before the event loop ends.
    """

    async def run() -> Any:
        try:
            return await operation()
        finally:
            await state.aclose()

    try:
        payload = asyncio.run(run())
    except Exception as exc:
        _cli_fail(exc)
        return
    _emit(payload)


def _mio(quantity: str) -> int:
    """Convert a CLI quantity in IO to integer mIO."""
    try:
        return IOToken(quantity).to_mio().value_of()
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--quantity") from exc


def _selector_options(func: Callable) -> Callable:
    func = click.option("--timestamp", type=int, help="Evaluate as of this timestamp (ms).")(func)
    func = click.option("--sort-key", help="Evaluate as of this interaction sort key.")(func)
    func = click.option("--block-height", type=int, help="Evaluate as of this block height.")(func)
    return func


def _selector(block_height: Optional[int], sort_key: Optional[str], timestamp: Optional[int]) -> EvaluationOptions:
    return EvaluationOptions(sort_key=sort_key, block_height=block_height, timestamp=timestamp)


# ============================================================================
# CLI Group
# ============================================================================


@click.group()
@click.option("--process-id", envvar="ARIO_PROCESS_ID", help="Network registry process id.")
@click.option("--contract-id", help="Legacy registry contract id (read-only).")
@click.option("--legacy", is_flag=True, help="Read the legacy testnet registry contract when no --contract-id is given.")
@click.option("--cache-url", help="Contract state cache service URL.")
@click.option("--cu-url", help="Compute unit URL.")
@click.option("--mu-url", help="Messenger unit URL.")
@click.option("--gateway-url", help="Arweave gateway URL.")
@click.option(
    "--wallet-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Arweave JWK wallet file used to sign writes.",
)
@click.option("--private-key", envvar="ARIO_PRIVATE_KEY", help="secp256k1 private key (hex) used to sign writes.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML configuration file.",
)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON.")
@click.pass_context
def cli(
    ctx: click.Context,
    process_id: Optional[str],
    contract_id: Optional[str],
    legacy: bool,
    cache_url: Optional[str],
    cu_url: Optional[str],
    mu_url: Optional[str],
    gateway_url: Optional[str],
    wallet_file: Optional[Path],
    private_key: Optional[str],
    config_path: Optional[Path],
    debug: bool,
    log_json: bool,
):
    """
    AR.IO network CLI.

    Reads the network registry and name-registry units, and sends signed
    registry writes.
    """
    try:
        base = ClientConfig.from_yaml(config_path) if config_path else ClientConfig.from_env()
        config = base.merged(cache_url=cache_url, cu_url=cu_url, mu_url=mu_url, gateway_url=gateway_url)
        setup_logging("ario", level="DEBUG" if debug else config.log_level, json_format=log_json, stream=sys.stderr)
    except (ARIOError, ValueError) as exc:
        _cli_fail(exc)
        return

    if legacy and contract_id is None:
        contract_id = ARNS_TESTNET_REGISTRY_TX

    ctx.ensure_object(dict)
    ctx.obj["state"] = CliState(
        config=config,
        process_id=process_id,
        contract_id=contract_id,
        wallet_file=wallet_file,
        private_key=private_key,
    )


def _state(ctx: click.Context) -> CliState:
    return ctx.obj["state"]


# ============================================================================
# Registry reads
# ============================================================================


@cli.command("info")
@_selector_options
@click.pass_context
def info(ctx: click.Context, block_height, sort_key, timestamp):
    """Show registry info."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_info(_selector(block_height, sort_key, timestamp)))


@cli.command("balance")
@click.option("--address", required=True, help="Wallet address.")
@_selector_options
@click.pass_context
def balance(ctx: click.Context, address: str, block_height, sort_key, timestamp):
    """Show the balance of an address."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        mio = await state.io().get_balance(address, _selector(block_height, sort_key, timestamp))
        return {"address": address, "mIOBalance": mio, "IOBalance": str(mIOToken(mio).to_io())}

    _execute(state, run)


@cli.command("list-balances")
@_selector_options
@click.pass_context
def list_balances(ctx: click.Context, block_height, sort_key, timestamp):
    """List all balances."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_balances(_selector(block_height, sort_key, timestamp)))


@cli.command("get-gateway")
@click.option("--address", required=True, help="Gateway operator address.")
@_selector_options
@click.pass_context
def get_gateway(ctx: click.Context, address: str, block_height, sort_key, timestamp):
    """Show one gateway."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_gateway(address, _selector(block_height, sort_key, timestamp)))


@cli.command("list-gateways")
@_selector_options
@click.pass_context
def list_gateways(ctx: click.Context, block_height, sort_key, timestamp):
    """List all gateways."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_gateways(_selector(block_height, sort_key, timestamp)))


@cli.command("get-arns-record")
@click.option("--name", required=True, help="ArNS name.")
@_selector_options
@click.pass_context
def get_arns_record(ctx: click.Context, name: str, block_height, sort_key, timestamp):
    """Show one ArNS record."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_arns_record(name, _selector(block_height, sort_key, timestamp)))


@cli.command("list-arns-records")
@_selector_options
@click.pass_context
def list_arns_records(ctx: click.Context, block_height, sort_key, timestamp):
    """List all ArNS records."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_arns_records(_selector(block_height, sort_key, timestamp)))


@cli.command("get-arns-reserved-name")
@click.option("--name", required=True, help="Reserved name.")
@_selector_options
@click.pass_context
def get_arns_reserved_name(ctx: click.Context, name: str, block_height, sort_key, timestamp):
    """Show one reserved name."""
    state = _state(ctx)
    _execute(
        state,
        lambda: state.io().get_arns_reserved_name(name, _selector(block_height, sort_key, timestamp))
    )


@cli.command("list-arns-reserved-names")
@_selector_options
@click.pass_context
def list_arns_reserved_names(ctx: click.Context, block_height, sort_key, timestamp):
    """List all reserved names."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_arns_reserved_names(_selector(block_height, sort_key, timestamp)))


@cli.command("get-epoch")
@click.option("--epoch-block-height", type=int, required=True, help="A block height inside the epoch.")
@click.pass_context
def get_epoch(ctx: click.Context, epoch_block_height: int):
    """Show the epoch containing a block height."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_epoch(epoch_block_height))


@cli.command("get-current-epoch")
@_selector_options
@click.pass_context
def get_current_epoch(ctx: click.Context, block_height, sort_key, timestamp):
    """Show the current epoch."""
    state = _state(ctx)
    _execute(state, lambda: state.io().get_current_epoch(_selector(block_height, sort_key, timestamp)))


@cli.command("get-prescribed-observers")
@_selector_options
@click.pass_context
def get_prescribed_observers(ctx: click.Context, block_height, sort_key, timestamp):
    """List the prescribed observers of the current epoch."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        observers = await state.io().get_prescribed_observers(
            _selector(block_height, sort_key, timestamp)
        )
        return {"observers": observers}

    _execute(state, run)


@cli.command("get-observations")
@click.option("--epoch", type=int, help="Epoch start height.")
@_selector_options
@click.pass_context
def get_observations(ctx: click.Context, epoch: Optional[int], block_height, sort_key, timestamp):
    """Show observations, optionally for one epoch."""
    state = _state(ctx)
    _execute(
        state,
        lambda: state.io().get_observations(epoch, _selector(block_height, sort_key, timestamp))
    )


@cli.command("get-distributions")
@click.option("--epoch", type=int, help="A block height inside the epoch.")
@_selector_options
@click.pass_context
def get_distributions(ctx: click.Context, epoch: Optional[int], block_height, sort_key, timestamp):
    """Show reward distributions, optionally for one epoch."""
    state = _state(ctx)
    _execute(
        state,
        lambda: state.io().get_distributions(epoch, _selector(block_height, sort_key, timestamp))
    )


# ============================================================================
# Registry writes
# ============================================================================


def _receipt(result) -> Dict[str, Any]:
    return result.to_dict()


@cli.command("transfer")
@click.option("--target", required=True, help="Recipient address.")
@click.option("--quantity", required=True, help="Amount in IO.")
@click.pass_context
def transfer(ctx: click.Context, target: str, quantity: str):
    """Transfer IO to another address."""
    state = _state(ctx)
    qty = _mio(quantity)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().transfer(target, qty))

    _execute(state, run)


@cli.command("join-network")
@click.option("--quantity", required=True, help="Operator stake in IO.")
@click.option("--label", required=True)
@click.option("--fqdn", required=True)
@click.option("--port", type=int, default=443, show_default=True)
@click.option("--protocol", default="https", show_default=True)
@click.option("--allow-delegated-staking/--no-allow-delegated-staking", default=None)
@click.option("--delegate-reward-share-ratio", type=int)
@click.option("--min-delegated-stake", help="Minimum delegated stake in IO.")
@click.option("--note")
@click.option("--properties", help="Gateway properties transaction id.")
@click.option("--auto-stake/--no-auto-stake", default=None)
@click.option("--observer-address")
@click.option("--skip-balance-check", is_flag=True, help="Send without checking the operator balance first.")
@click.pass_context
def join_network(
    ctx: click.Context,
    quantity: str,
    label: str,
    fqdn: str,
    port: int,
    protocol: str,
    allow_delegated_staking: Optional[bool],
    delegate_reward_share_ratio: Optional[int],
    min_delegated_stake: Optional[str],
    note: Optional[str],
    properties: Optional[str],
    auto_stake: Optional[bool],
    observer_address: Optional[str],
    skip_balance_check: bool,
):
    """Join the network as a gateway operator."""
    state = _state(ctx)
    qty = _mio(quantity)
    min_stake = _mio(min_delegated_stake) if min_delegated_stake is not None else None

    async def run() -> Dict[str, Any]:
        io = state.io_writeable()
        if not skip_balance_check:
            balance = await io.get_balance(io.signer.address())
            if balance < qty:
                raise click.ClickException(
                    f"Insufficient balance. Required: {format_io_with_commas(mIOToken(qty).to_io())} IO, "
                    f"available: {format_io_with_commas(mIOToken(balance).to_io())} IO"
                )
        result = await io.join_network(
            qty=qty,
            label=label,
            fqdn=fqdn,
            port=port,
            protocol=protocol,
            allow_delegated_staking=allow_delegated_staking,
            delegate_reward_share_ratio=delegate_reward_share_ratio,
            min_delegated_stake=min_stake,
            note=note,
            properties=properties,
            auto_stake=auto_stake,
            observer_address=observer_address,
        )
        return _receipt(result)

    _execute(state, run)


@cli.command("leave-network")
@click.pass_context
def leave_network(ctx: click.Context):
    """Leave the network."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().leave_network())

    _execute(state, run)


@cli.command("update-gateway-settings")
@click.option("--label")
@click.option("--note")
@click.option("--fqdn")
@click.option("--port", type=int)
@click.option("--properties")
@click.option("--protocol")
@click.option("--observer-address")
@click.option("--allow-delegated-staking/--no-allow-delegated-staking", default=None)
@click.option("--delegate-reward-share-ratio", type=int)
@click.option("--min-delegated-stake", help="Minimum delegated stake in IO.")
@click.option("--auto-stake/--no-auto-stake", default=None)
@click.pass_context
def update_gateway_settings(
    ctx: click.Context,
    label: Optional[str],
    note: Optional[str],
    fqdn: Optional[str],
    port: Optional[int],
    properties: Optional[str],
    protocol: Optional[str],
    observer_address: Optional[str],
    allow_delegated_staking: Optional[bool],
    delegate_reward_share_ratio: Optional[int],
    min_delegated_stake: Optional[str],
    auto_stake: Optional[bool],
):
    """Update gateway settings; only the options given are changed."""
    state = _state(ctx)
    min_stake = _mio(min_delegated_stake) if min_delegated_stake is not None else None

    async def run() -> Dict[str, Any]:
        result = await state.io_writeable().update_gateway_settings(
            label=label,
            note=note,
            fqdn=fqdn,
            port=port,
            properties=properties,
            protocol=protocol,
            observer_address=observer_address,
            allow_delegated_staking=allow_delegated_staking,
            delegate_reward_share_ratio=delegate_reward_share_ratio,
            min_delegated_stake=min_stake,
            auto_stake=auto_stake,
        )
        return _receipt(result)

    _execute(state, run)


@cli.command("increase-operator-stake")
@click.option("--quantity", required=True, help="Amount in IO.")
@click.pass_context
def increase_operator_stake(ctx: click.Context, quantity: str):
    """Increase your operator stake."""
    state = _state(ctx)
    qty = _mio(quantity)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().increase_operator_stake(qty))

    _execute(state, run)


@cli.command("decrease-operator-stake")
@click.option("--quantity", required=True, help="Amount in IO.")
@click.pass_context
def decrease_operator_stake(ctx: click.Context, quantity: str):
    """Decrease your operator stake."""
    state = _state(ctx)
    qty = _mio(quantity)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().decrease_operator_stake(qty))

    _execute(state, run)


@cli.command("delegate-stake")
@click.option("--target", required=True, help="Gateway operator address.")
@click.option("--quantity", required=True, help="Amount in IO.")
@click.pass_context
def delegate_stake(ctx: click.Context, target: str, quantity: str):
    """Delegate stake to a gateway."""
    state = _state(ctx)
    qty = _mio(quantity)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().increase_delegate_stake(target, qty))

    _execute(state, run)


@cli.command("decrease-delegate-stake")
@click.option("--target", required=True, help="Gateway operator address.")
@click.option("--quantity", required=True, help="Amount in IO.")
@click.pass_context
def decrease_delegate_stake(ctx: click.Context, target: str, quantity: str):
    """Withdraw stake delegated to a gateway."""
    state = _state(ctx)
    qty = _mio(quantity)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().decrease_delegate_stake(target, qty))

    _execute(state, run)


@cli.command("save-observations")
@click.option("--report-tx-id", required=True, help="Observer report transaction id.")
@click.option("--failed-gateways", default="", help="Comma separated failed gateway addresses.")
@click.pass_context
def save_observations(ctx: click.Context, report_tx_id: str, failed_gateways: str):
    """Submit an observer report."""
    state = _state(ctx)
    failed = [address.strip() for address in failed_gateways.split(",") if address.strip()]

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().save_observations(report_tx_id, failed))

    _execute(state, run)


@cli.command("extend-lease")
@click.option("--name", required=True, help="ArNS name.")
@click.option("--years", type=click.IntRange(1, 5), required=True)
@click.pass_context
def extend_lease(ctx: click.Context, name: str, years: int):
    """Extend the lease of an ArNS name."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().extend_lease(name, years))

    _execute(state, run)


@cli.command("increase-undername-limit")
@click.option("--name", required=True, help="ArNS name.")
@click.option("--increase-count", type=click.IntRange(min=1), required=True)
@click.pass_context
def increase_undername_limit(ctx: click.Context, name: str, increase_count: int):
    """Increase the undername limit of an ArNS name."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        return _receipt(await state.io_writeable().increase_undername_limit(name, increase_count))

    _execute(state, run)


@cli.command("get-result")
@click.option("--message-id", required=True, help="Id returned by a write command.")
@click.pass_context
def get_result(ctx: click.Context, message_id: str):
    """Fetch the computed result of a previously sent message."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        facade = state.io()
        if not isinstance(facade.backend, ProcessBacked):
            raise InvalidConfigurationError("get-result requires a process backend")
        result = await facade.backend.process.result_for(message_id)
        return {"id": message_id, "result": result}

    _execute(state, run)


# ============================================================================
# Name-registry units
# ============================================================================


@cli.command("get-ant-state")
@click.option("--ant-process-id", help="Name-registry unit process id.")
@click.option("--ant-contract-id", help="Legacy name-registry unit contract id.")
@_selector_options
@click.pass_context
def get_ant_state(
    ctx: click.Context,
    ant_process_id: Optional[str],
    ant_contract_id: Optional[str],
    block_height,
    sort_key,
    timestamp,
):
    """Show the state of a name-registry unit."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        ant = state.track(
            ANT.init(process_id=ant_process_id, contract_id=ant_contract_id, config=state.config)
        )
        return await ant.get_state(_selector(block_height, sort_key, timestamp))

    _execute(state, run)


@cli.command("list-owned-ants")
@click.option("--address", required=True, help="Wallet address.")
@click.pass_context
def list_owned_ants(ctx: click.Context, address: str):
    """List name-registry unit processes owned or controlled by an address."""
    state = _state(ctx)

    async def run() -> Dict[str, Any]:
        process_ids = await get_ant_processes_owned_by_wallet(
            address, state.io(), config=state.config
        )
        return {"address": address, "processIds": process_ids}

    _execute(state, run)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
