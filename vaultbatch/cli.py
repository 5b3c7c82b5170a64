"""
VaultBatch CLI
==============
Typer + Rich front end for the batch engine.

Commands:
    vaultbatch stake-accounts
    vaultbatch propose-unstake --all
    vaultbatch approve-pending
    vaultbatch execute 41 42 43
"""

import asyncio
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from solders.pubkey import Pubkey

from config.settings import Settings
from vaultbatch.batch.approval_batcher import ApprovalBatcher
from vaultbatch.batch.orchestrator import BatchOrchestrator
from vaultbatch.batch.progress import Progress, ProgressStage
from vaultbatch.batch.queue import ApprovalQueue, ExecuteItem, ExecuteQueue
from vaultbatch.batch.results import BatchResult
from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.infrastructure.signer import KeypairSigner, load_keypair
from vaultbatch.infrastructure.stake_reader import StakeAccountReader
from vaultbatch.ledger import multisig
from vaultbatch.shared.errors import BatchError, truncate_message
from vaultbatch.shared.system.logging import Logger
from vaultbatch.staking.lifecycle import StakeState
from vaultbatch.staking.stake_actions import StakeOperationBuilder, format_sol, short_address

app = typer.Typer(
    name="vaultbatch",
    help="VaultBatch - batch proposals, approvals and executes for a multisig vault",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

STATE_STYLES = {
    StakeState.ACTIVE: "green",
    StakeState.ACTIVATING: "cyan",
    StakeState.DEACTIVATING: "yellow",
    StakeState.INACTIVE: "dim",
}


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _multisig_address(address: Optional[str]) -> Pubkey:
    value = address or Settings.MULTISIG_ADDRESS
    if not value:
        console.print("[bold red]❌ No multisig selected: pass --multisig or set MULTISIG_ADDRESS[/bold red]")
        raise typer.Exit(1)
    try:
        return Pubkey.from_string(value)
    except ValueError:
        console.print(f"[bold red]❌ Invalid multisig address: {value}[/bold red]")
        raise typer.Exit(1)


def _confirm_signing(count: int) -> bool:
    noun = "transaction" if count == 1 else "transactions"
    return typer.confirm(f"\nSign {count} {noun}?", default=False)


def _orchestrator(rpc: LedgerRpc, multisig_pda: Pubkey, keypair_path: Optional[str]) -> BatchOrchestrator:
    signer = KeypairSigner(load_keypair(keypair_path), prompt=_confirm_signing)
    return BatchOrchestrator(
        rpc,
        signer,
        multisig_pda,
        on_invalidate=lambda keys: Logger.debug(f"[CLI] Stale queries: {', '.join(keys)}"),
    )


def _print_progress(progress: Progress) -> None:
    if progress.stage is ProgressStage.ERROR:
        console.print(f"[bold red]✖ {progress.error}[/bold red]")
        return
    text = progress.message or progress.stage.value.capitalize() + "..."
    style = "bold green" if progress.stage is ProgressStage.DONE else "dim"
    console.print(f"[{style}]• {text}[/{style}]")


def _print_result(result: BatchResult) -> None:
    if result.cancelled:
        console.print("[yellow]Cancelled.[/yellow]")
        return

    table = Table(title="Submitted transactions")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Signature")
    table.add_column("Error")
    for outcome in result.outcomes:
        style = "green" if outcome.success else "red"
        table.add_row(
            str(outcome.transaction_index) if outcome.transaction_index is not None else "-",
            f"[{style}]{outcome.status.value}[/{style}]",
            outcome.signature or "-",
            outcome.error_message or "",
        )
    console.print(table)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except BatchError as e:
        console.print(f"[bold red]❌ {truncate_message(str(e))}[/bold red]")
        raise typer.Exit(1)


MULTISIG_OPTION = typer.Option(None, "--multisig", "-m", help="Multisig account address")
KEYPAIR_OPTION = typer.Option(None, "--keypair", "-k", help="Solana CLI keypair file")


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: STAKE-ACCOUNTS
# ═══════════════════════════════════════════════════════════════════════════════

@app.command("stake-accounts")
def stake_accounts(
    multisig_address: Optional[str] = MULTISIG_OPTION,
    vault_index: int = typer.Option(0, "--vault-index", help="Vault index", min=0, max=255),
):
    """
    List the vault's stake accounts with their lifecycle state.

    \b
    Examples:
        vaultbatch stake-accounts
        vaultbatch stake-accounts --vault-index 1
    """
    multisig_pda = _multisig_address(multisig_address)
    vault_pda, _ = multisig.get_vault_pda(multisig_pda, vault_index)

    async def run():
        rpc = LedgerRpc()
        try:
            accounts = await StakeAccountReader(rpc).fetch_for_vault(vault_pda)
        finally:
            await rpc.close()

        if not accounts:
            console.print(f"[yellow]⚠️  No stake accounts for vault {vault_pda}[/yellow]")
            return

        table = Table(title=f"Stake accounts for vault {short_address(vault_pda)}")
        table.add_column("Account")
        table.add_column("Validator")
        table.add_column("State")
        table.add_column("Balance", justify="right")
        table.add_column("Delegated", justify="right")
        for info in sorted(accounts, key=lambda a: a.balance, reverse=True):
            style = STATE_STYLES[info.state]
            table.add_row(
                str(info.address),
                short_address(info.delegated_validator) if info.delegated_validator else "-",
                f"[{style}]{info.state.value}[/{style}]",
                format_sol(info.balance),
                format_sol(info.delegated_amount),
            )
        console.print(table)

    _run(run())


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: PROPOSE-UNSTAKE
# ═══════════════════════════════════════════════════════════════════════════════

@app.command("propose-unstake")
def propose_unstake(
    accounts: Optional[List[str]] = typer.Argument(None, help="Stake account addresses"),
    all_active: bool = typer.Option(False, "--all", help="Unstake every active or activating account"),
    memo: Optional[str] = typer.Option(None, "--memo", help="Memo attached to each operation"),
    multisig_address: Optional[str] = MULTISIG_OPTION,
    vault_index: int = typer.Option(0, "--vault-index", help="Vault index", min=0, max=255),
    keypair: Optional[str] = KEYPAIR_OPTION,
):
    """
    Queue unstake operations and propose them as one vault transaction.

    Operations that do not fit in a single transaction are left out and
    listed, so they can go into a follow-up proposal.

    \b
    Examples:
        vaultbatch propose-unstake --all
        vaultbatch propose-unstake 7xKX... 9aBc...
    """
    if not accounts and not all_active:
        console.print("[bold red]❌ Specify stake account addresses or --all[/bold red]")
        raise typer.Exit(1)

    multisig_pda = _multisig_address(multisig_address)
    vault_pda, _ = multisig.get_vault_pda(multisig_pda, vault_index)

    async def run():
        rpc = LedgerRpc()
        try:
            orchestrator = _orchestrator(rpc, multisig_pda, keypair)
            found = await StakeAccountReader(rpc).fetch_for_vault(vault_pda)
            builder = StakeOperationBuilder(vault_pda, vault_index=vault_index)

            wanted = set(accounts or [])
            targets = [
                info for info in found
                if (all_active or str(info.address) in wanted) and builder.classifier.can_undelegate(info)
            ]
            if not targets:
                console.print("[yellow]⚠️  Nothing to unstake[/yellow]")
                return

            queue = orchestrator.new_operation_queue(vault_index, memo=memo)
            skipped = [info for info in targets if not queue.try_add(builder.unstake(info, memo=memo))]

            console.print(Panel.fit(
                f"[bold cyan]Unstake proposal[/bold cyan]\n"
                f"Operations: {len(queue)} | Instructions: {queue.total_instructions}/{queue.max_instructions} | "
                f"Size: {queue.projected_bytes}/{Settings.MAX_TX_BYTES} bytes",
                border_style="cyan",
            ))
            for info in skipped:
                console.print(f"[yellow]Did not fit, left out: {info.address}[/yellow]")

            result = await orchestrator.submit_batch_proposal(queue, on_progress=_print_progress, memo=memo)
            _print_result(result)
        finally:
            await rpc.close()

    _run(run())


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: APPROVE-PENDING
# ═══════════════════════════════════════════════════════════════════════════════

@app.command("approve-pending")
def approve_pending(
    multisig_address: Optional[str] = MULTISIG_OPTION,
    keypair: Optional[str] = KEYPAIR_OPTION,
):
    """
    Approve every pending proposal you have not voted on, in one transaction.

    At most MAX_BATCH_APPROVALS proposals are taken per run, oldest first.
    """
    multisig_pda = _multisig_address(multisig_address)

    async def run():
        rpc = LedgerRpc()
        try:
            orchestrator = _orchestrator(rpc, multisig_pda, keypair)
            batcher = ApprovalBatcher(rpc, multisig_pda, orchestrator.signer.pubkey())
            items = await batcher.prefilter(await batcher.pending_indices())
            if not items:
                console.print("[green]✅ Nothing pending your approval[/green]")
                return

            queue = ApprovalQueue()
            for item in items:
                if not queue.try_add(item):
                    break
            console.print(f"Approving proposals: [cyan]{', '.join(f'#{i}' for i in queue.indices)}[/cyan]")

            result = await orchestrator.submit_batch_approvals(queue, on_progress=_print_progress)
            _print_result(result)
        finally:
            await rpc.close()

    _run(run())


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: EXECUTE
# ═══════════════════════════════════════════════════════════════════════════════

@app.command("execute")
def execute(
    indices: List[int] = typer.Argument(..., help="Transaction indices to execute"),
    multisig_address: Optional[str] = MULTISIG_OPTION,
    keypair: Optional[str] = KEYPAIR_OPTION,
):
    """
    Execute approved proposals, one transaction each, signed together.

    \b
    Examples:
        vaultbatch execute 41 42 43
    """
    multisig_pda = _multisig_address(multisig_address)

    queue = ExecuteQueue()
    for index in indices:
        try:
            queue.add(ExecuteItem(index))
        except BatchError as e:
            console.print(f"[bold red]❌ #{index}: {e}[/bold red]")
            raise typer.Exit(1)

    async def run():
        rpc = LedgerRpc()
        try:
            orchestrator = _orchestrator(rpc, multisig_pda, keypair)
            result = await orchestrator.submit_batch_executes(queue, on_progress=_print_progress)
            _print_result(result)
            if result.failed:
                raise typer.Exit(1)
        finally:
            await rpc.close()

    _run(run())


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def main():
    """Entry point for CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
