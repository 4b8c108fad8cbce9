"""CLI for Wallet Custody - operate custodial wallets from the terminal."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from wallet_custody.errors import ConfigError, CustodyError

T = TypeVar("T")

app = typer.Typer(
    name="wallet-custody",
    help="Provision and operate custodial EVM and Solana wallets.",
    no_args_is_help=True,
)
console = Console()

_config_path: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"wallet-custody {version('wallet-custody')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.yaml (default: .wallet-custody/config.yaml)",
        envvar="WALLET_CUSTODY_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Provision and operate custodial EVM and Solana wallets."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor() as pool:
        return pool.submit(asyncio.run, coro).result()


def _fail(kind: str, message: str) -> None:
    console.print(f"[red]\\[{kind}] {escape(message)}[/red]")
    raise typer.Exit(1)


def _with_manager(action: Callable[..., Awaitable[T]]) -> T:
    """Load the runtime, run *action(manager)*, and always shut down."""
    from wallet_custody.core.runtime import CustodyRuntime

    async def _go():
        runtime = await CustodyRuntime.load(_config_path)
        try:
            return await action(runtime.manager)
        finally:
            await runtime.shutdown()

    try:
        return _run(_go())
    except CustodyError as e:
        _fail(e.kind.value, e.message)
    except ConfigError as e:
        _fail("ConfigError", str(e))


# ------------------------------------------------------------------
# init / chains
# ------------------------------------------------------------------


@app.command()
def init(
    name: str = typer.Option("wallet-custody", "--name", "-n", help="Service name"),
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Base directory"),
):
    """Write a default configuration with ${ENV} placeholders for secrets."""
    from wallet_custody.core.runtime import CustodyRuntime

    try:
        config_path = CustodyRuntime.init(directory, name=name)
    except FileExistsError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold green]Configuration written![/bold green]\n\n"
        f"Config: [cyan]{config_path}[/cyan]\n\n"
        f"[dim]Set ENCRYPTION_KEY (32+ chars), CUSTODY_ENVIRONMENT_ID and\n"
        f"CUSTODY_API_TOKEN before running wallet commands.[/dim]",
        title="Wallet Custody",
    ))


@app.command()
def chains(
    family: Optional[str] = typer.Option(None, "--family", "-f", help="Filter by family (evm, solana)"),
):
    """List supported chains."""
    from wallet_custody.wallet.chains import list_chains, resolve_family

    try:
        selected = list_chains(resolve_family(family) if family else None)
    except CustodyError as e:
        _fail(e.kind.value, e.message)

    table = Table(title="Supported Chains")
    table.add_column("Chain ID", style="cyan")
    table.add_column("Name")
    table.add_column("Family")
    table.add_column("Symbol")
    table.add_column("Custody Network", style="dim")
    for chain in selected:
        table.add_row(
            chain.key,
            chain.name,
            chain.family.value,
            chain.native_symbol,
            chain.custody_network_id,
        )
    console.print(table)


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Create and operate user wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("create")
def wallet_create(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    family: str = typer.Option("evm", "--family", "-f", help="Chain family (evm, solana)"),
):
    """Create the user's wallet for a chain family (idempotent)."""
    view = _with_manager(lambda m: m.create_wallet(user, family))

    if view.is_new:
        console.print(Panel(
            f"[bold green]Wallet created![/bold green]\n\n"
            f"Wallet ID: [cyan]{view.wallet_id}[/cyan]\n"
            f"Address: [cyan]{view.address}[/cyan]\n"
            f"Family: {view.chain_family.value}",
            title="Custodial Wallet",
        ))
    else:
        console.print(f"[yellow]Wallet already exists.[/yellow] {view.wallet_id} [cyan]{view.address}[/cyan]")


@wallet_app.command("list")
def wallet_list(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
):
    """List a user's wallets."""
    views = _with_manager(lambda m: m.list_wallets(user))

    if not views:
        console.print(f"[yellow]No wallets for user {user}.[/yellow]")
        return

    table = Table(title=f"Wallets for {user}")
    table.add_column("Wallet ID", style="cyan")
    table.add_column("Family")
    table.add_column("Address")
    table.add_column("Created", style="dim")
    for view in views:
        created = view.created_at.strftime("%Y-%m-%d %H:%M") if view.created_at else ""
        table.add_row(view.wallet_id, view.chain_family.value, view.address, created)
    console.print(table)


@wallet_app.command("balance")
def wallet_balance(
    wallet_id: str = typer.Argument(help="Wallet ID"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    token: Optional[str] = typer.Option(None, "--token", "-t", help="Token contract / mint address"),
    chain: Optional[str] = typer.Option(None, "--chain", help="Chain id (default: family default)"),
):
    """Show a wallet's native or token balance."""
    result = _with_manager(lambda m: m.get_balance(user, wallet_id, token_address=token, chain_id=chain))
    console.print(
        f"[bold]{result.token.name}[/bold] on chain {result.chain_id}: "
        f"{result.balance} {result.token.symbol}"
    )


@wallet_app.command("sign")
def wallet_sign(
    wallet_id: str = typer.Argument(help="Wallet ID"),
    message: str = typer.Argument(help="Message to sign"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
):
    """Sign a message with the wallet's key."""
    result = _with_manager(lambda m: m.sign_message(user, wallet_id, message))
    console.print(Panel(
        f"Address: [cyan]{result.address}[/cyan]\n"
        f"Signature: {result.signed_message}",
        title="Signed Message",
    ))


@wallet_app.command("send")
def wallet_send(
    wallet_id: str = typer.Argument(help="Wallet ID"),
    amount: str = typer.Argument(help="Amount to send in native units (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", help="Recipient address"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    data: Optional[str] = typer.Option(None, "--data", help="Hex calldata (EVM only)"),
    chain: Optional[str] = typer.Option(None, "--chain", help="Chain id (default: family default)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Send native tokens from a custodial wallet."""
    console.print(f"\n[bold]Send {amount} from wallet {wallet_id}[/bold]")
    console.print(f"  To: {to}")
    if chain:
        console.print(f"  Chain: {chain}")
    console.print()
    if not yes:
        typer.confirm("Confirm this transaction?", abort=True)

    result = _with_manager(
        lambda m: m.send_transaction(user, wallet_id, to, amount, data=data, chain_id=chain)
    )
    lines = f"[bold green]Transaction sent![/bold green]\n\nTx: [cyan]{result.transaction_hash}[/cyan]"
    if result.explorer_url:
        lines += f"\nExplorer: {result.explorer_url}"
    console.print(Panel(lines, title="Transaction Sent"))


if __name__ == "__main__":
    app()
