"""
Execute Batcher
===============
Executes approved proposals, one transaction per proposal.

Two phases:
1. build + sign everything in one signer interaction (all or nothing)
2. submit sequentially; a failure on item k never stops k+1..n
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from config.settings import Settings
from vaultbatch.batch.confirmation import ConfirmationWaiter
from vaultbatch.batch.packer import message_size
from vaultbatch.batch.queue import ExecuteItem
from vaultbatch.batch.results import BatchResult, confirmed_outcome, failed_outcome
from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.infrastructure.signer import Signer
from vaultbatch.ledger import multisig
from vaultbatch.ledger.borsh import LayoutError
from vaultbatch.ledger.lookup_table import to_lookup_table_account
from vaultbatch.shared.errors import (
    BatchError,
    ErrorCode,
    NothingToExecuteError,
    SignerError,
    TransactionTooLargeError,
    format_error,
    truncate_message,
)
from vaultbatch.shared.system.logging import Logger


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExecuteConfig:
    compute_unit_limit: int = field(default_factory=lambda: Settings.COMPUTE_UNIT_LIMIT)
    priority_fee_micro_lamports: int = field(default_factory=lambda: Settings.PRIORITY_FEE_MICRO_LAMPORTS)
    include_compute_budget: bool = True
    max_bytes: int = field(default_factory=lambda: Settings.MAX_TX_BYTES)


class TransactionKind(Enum):
    VAULT = "vault"
    CONFIG = "config"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolvedExecute:
    """An execute target with everything needed to build its transaction."""

    transaction_index: int
    kind: TransactionKind
    execute_instruction: Optional[Instruction] = None
    lookup_tables: Tuple[AddressLookupTableAccount, ...] = ()


@dataclass(frozen=True)
class PreparedExecute:
    target: ResolvedExecute
    message: MessageV0


# (completed, total, transaction_index) for per-item progress
ItemProgress = Callable[[int, int, int], None]


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTE BATCHER
# ═══════════════════════════════════════════════════════════════════════════════

class ExecuteBatcher:
    """
    Usage:
        batcher = ExecuteBatcher(rpc, multisig_pda, member=signer.pubkey())
        prepared = await batcher.build(queue.items)
        signed = await batcher.sign_all(signer, prepared)
        result = await batcher.submit_all(prepared, signed, waiter)
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        multisig_pda: Pubkey,
        member: Pubkey,
        program_id: Pubkey = multisig.DEFAULT_PROGRAM_ID,
        config: Optional[ExecuteConfig] = None,
    ):
        self.rpc = rpc
        self.multisig_pda = multisig_pda
        self.member = member
        self.program_id = program_id
        self.config = config or ExecuteConfig()

    # ═══════════════════════════════════════════════════════════════════════════
    # RESOLUTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def _resolve_lookup_tables(
        self,
        vault_tx: multisig.VaultTransactionAccount,
    ) -> Dict[Pubkey, AddressLookupTableAccount]:
        keys = [lookup.account_key for lookup in vault_tx.message.address_table_lookups]
        if not keys:
            return {}
        datas = await self.rpc.get_multiple_account_data(keys)
        tables: Dict[Pubkey, AddressLookupTableAccount] = {}
        for key, data in zip(keys, datas):
            if data is None:
                raise LayoutError(f"Lookup table {key} not found")
            tables[key] = to_lookup_table_account(key, data)
        return tables

    async def resolve(self, transaction_index: int) -> ResolvedExecute:
        """Classify the stored transaction and build its execute instruction."""
        transaction_pda, _ = multisig.get_transaction_pda(
            self.multisig_pda, transaction_index, self.program_id
        )
        data = await self.rpc.get_account_data(transaction_pda)
        if data is None:
            return ResolvedExecute(transaction_index, TransactionKind.UNKNOWN)

        try:
            vault_tx = multisig.decode_vault_transaction(data)
        except LayoutError:
            vault_tx = None

        if vault_tx is not None:
            tables = await self._resolve_lookup_tables(vault_tx)
            ix = multisig.vault_transaction_execute(
                self.multisig_pda,
                transaction_index,
                member=self.member,
                vault_transaction=vault_tx,
                lookup_table_addresses={k: list(t.addresses) for k, t in tables.items()},
                program_id=self.program_id,
            )
            return ResolvedExecute(
                transaction_index,
                TransactionKind.VAULT,
                execute_instruction=ix,
                lookup_tables=tuple(tables.values()),
            )

        try:
            multisig.decode_config_transaction(data)
        except LayoutError:
            return ResolvedExecute(transaction_index, TransactionKind.UNKNOWN)

        ix = multisig.config_transaction_execute(
            self.multisig_pda,
            transaction_index,
            member=self.member,
            program_id=self.program_id,
        )
        return ResolvedExecute(transaction_index, TransactionKind.CONFIG, execute_instruction=ix)

    async def resolve_all(self, items: Sequence[ExecuteItem]) -> List[ResolvedExecute]:
        """Resolvable targets in queue order; Unknown and unreadable items are dropped."""
        results = await asyncio.gather(
            *(self.resolve(item.transaction_index) for item in items),
            return_exceptions=True,
        )
        resolved: List[ResolvedExecute] = []
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                Logger.warning(f"[EXECUTE] Could not resolve #{item.transaction_index}: {result}")
                continue
            if result.kind is TransactionKind.UNKNOWN:
                Logger.debug(f"[EXECUTE] Skipping #{item.transaction_index}: unknown transaction type")
                continue
            resolved.append(result)
        return resolved

    # ═══════════════════════════════════════════════════════════════════════════
    # BUILD & SIGN
    # ═══════════════════════════════════════════════════════════════════════════

    def compute_budget_instructions(self) -> List[Instruction]:
        if not self.config.include_compute_budget:
            return []
        return [
            set_compute_unit_limit(self.config.compute_unit_limit),
            set_compute_unit_price(self.config.priority_fee_micro_lamports),
        ]

    async def build(self, items: Sequence[ExecuteItem]) -> List[PreparedExecute]:
        """
        One compiled message per resolvable proposal, sharing a blockhash.

        Raises:
            NothingToExecuteError: nothing resolved
            TransactionTooLargeError: an execute transaction is over the ceiling
        """
        targets = await self.resolve_all(items)
        if not targets:
            raise NothingToExecuteError("No executable transactions found")

        blockhash = await self.rpc.get_latest_blockhash()
        prepared: List[PreparedExecute] = []
        for target in targets:
            message = MessageV0.try_compile(
                payer=self.member,
                instructions=self.compute_budget_instructions() + [target.execute_instruction],
                address_lookup_table_accounts=list(target.lookup_tables),
                recent_blockhash=blockhash,
            )
            size = message_size(message)
            if size > self.config.max_bytes:
                raise TransactionTooLargeError(
                    f"Execute transaction for #{target.transaction_index} is {size} bytes "
                    f"(limit {self.config.max_bytes})",
                    {"transaction_index": target.transaction_index, "size": size},
                )
            prepared.append(PreparedExecute(target=target, message=message))

        Logger.debug(f"[EXECUTE] Built {len(prepared)} execute transaction(s)")
        return prepared

    async def sign_all(self, signer: Signer, prepared: Sequence[PreparedExecute]) -> List[VersionedTransaction]:
        """
        Single signer interaction. Rejection propagates; nothing is sent.

        Raises:
            SignerError: the signer returned a different number of transactions
        """
        signed = await signer.sign_all_transactions([p.message for p in prepared])
        if len(signed) != len(prepared):
            raise SignerError(
                f"Signer returned {len(signed)} transaction(s) for {len(prepared)} request(s)",
                {"expected": len(prepared), "received": len(signed)},
            )
        return signed

    # ═══════════════════════════════════════════════════════════════════════════
    # SUBMIT
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit_all(
        self,
        prepared: Sequence[PreparedExecute],
        signed: Sequence[VersionedTransaction],
        waiter: ConfirmationWaiter,
        on_item: Optional[ItemProgress] = None,
    ) -> BatchResult:
        """Submit in order, confirming each independently. Never raises per item."""
        result = BatchResult()
        total = len(prepared)

        for position, (item, tx) in enumerate(zip(prepared, signed), start=1):
            index = item.target.transaction_index
            start = time.time()
            signature: Optional[str] = None
            try:
                signature = await self.rpc.send_transaction(tx)
                await waiter.confirm(signature)
                result.outcomes.append(
                    confirmed_outcome(signature, index, latency_ms=(time.time() - start) * 1000)
                )
                Logger.success(f"[EXECUTE] #{index} executed ({position}/{total})")
            except BatchError as e:
                result.outcomes.append(
                    failed_outcome(
                        e.code,
                        truncate_message(format_error(e)),
                        transaction_index=index,
                        signature=signature,
                        latency_ms=(time.time() - start) * 1000,
                    )
                )
                Logger.error(f"[EXECUTE] #{index} failed ({position}/{total}): {truncate_message(str(e))}")
            except Exception as e:
                result.outcomes.append(
                    failed_outcome(
                        ErrorCode.UNKNOWN,
                        truncate_message(format_error(e)),
                        transaction_index=index,
                        signature=signature,
                    )
                )
                Logger.error(f"[EXECUTE] #{index} failed ({position}/{total}): {truncate_message(str(e))}")

            if on_item is not None:
                on_item(position, total, index)

        return result
