"""
Batch Orchestrator
==================
Drives one user action end to end:

    preparing -> signing -> sending -> confirming -> done | error

- submit_batch_proposal:  packed operations -> one vault transaction proposal
- submit_batch_approvals: many proposals approved in one transaction
- submit_batch_executes:  one execute transaction per proposal, signed together

A user rejection at the signer is a silent cancel: no error progress, no
error log, a cancelled result. Every other failure is reported through the
progress callback (truncated) and re-raised.
"""

from __future__ import annotations

import inspect
import time
from typing import Awaitable, Callable, List, Optional, Union

from solders.pubkey import Pubkey

from vaultbatch.batch.approval_batcher import ApprovalBatcher
from vaultbatch.batch.confirmation import ConfirmationConfig, ConfirmationWaiter
from vaultbatch.batch.execute_batcher import ExecuteBatcher, ExecuteConfig
from vaultbatch.batch.packer import InstructionPacker, PackerConfig
from vaultbatch.batch.progress import ProgressCallback, ProgressStage, ProgressTracker
from vaultbatch.batch.proposal_assembler import ProposalAssembler
from vaultbatch.batch.queue import ApprovalQueue, BatchQueue, ExecuteQueue
from vaultbatch.batch.results import BatchResult, cancelled_result, confirmed_outcome
from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.infrastructure.signer import Signer
from vaultbatch.ledger import multisig
from vaultbatch.shared.errors import (
    NoMultisigSelectedError,
    SignerUnavailableError,
    ValidationError,
    format_error,
    is_user_rejection,
    truncate_message,
)
from vaultbatch.shared.system.logging import Logger


# Query keys handed to the cache-invalidation callback
KEY_TRANSACTIONS = "transactions"
KEY_MULTISIG = "multisig"
KEY_PROPOSAL = "proposal"
KEY_TRANSACTION_DETAILS = "transaction-details"
KEY_STAKE_ACCOUNTS = "stake-accounts"

InvalidationCallback = Callable[[List[str]], Union[None, Awaitable[None]]]


class BatchOrchestrator:
    """
    Usage:
        orchestrator = BatchOrchestrator(rpc, signer, multisig_pda, on_invalidate=cache.invalidate)
        queue = orchestrator.new_operation_queue()
        queue.add(builder.unstake(account))
        result = await orchestrator.submit_batch_proposal(queue, on_progress=print)
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        signer: Optional[Signer],
        multisig_pda: Optional[Pubkey],
        program_id: Pubkey = multisig.DEFAULT_PROGRAM_ID,
        on_invalidate: Optional[InvalidationCallback] = None,
        confirmation_config: Optional[ConfirmationConfig] = None,
        execute_config: Optional[ExecuteConfig] = None,
        packer_config: Optional[PackerConfig] = None,
    ):
        self.rpc = rpc
        self.signer = signer
        self.multisig_pda = multisig_pda
        self.program_id = program_id
        self.on_invalidate = on_invalidate
        self.waiter = ConfirmationWaiter(rpc, confirmation_config)
        self.execute_config = execute_config
        self.packer_config = packer_config

        # Statistics
        self._proposals = 0
        self._approval_batches = 0
        self._executes = 0
        self._cancellations = 0
        self._failures = 0

    # ═══════════════════════════════════════════════════════════════════════════
    # WIRING
    # ═══════════════════════════════════════════════════════════════════════════

    def _require(self) -> Signer:
        if self.multisig_pda is None:
            raise NoMultisigSelectedError("No multisig selected")
        if self.signer is None:
            raise SignerUnavailableError("No signer available")
        return self.signer

    def assembler(self) -> ProposalAssembler:
        signer = self._require()
        max_bytes = self.packer_config.max_bytes if self.packer_config else None
        return ProposalAssembler(
            self.rpc, self.multisig_pda, signer.pubkey(), self.program_id, max_bytes=max_bytes
        )

    def new_operation_queue(self, vault_index: int = 0, memo: Optional[str] = None) -> BatchQueue:
        """
        Queue whose size projection includes the create/propose/approve envelope.

        `memo` must be the one later passed to submit_batch_proposal.
        """
        packer = InstructionPacker(
            config=self.packer_config,
            estimator=self.assembler().estimator(vault_index, memo),
        )
        return BatchQueue(packer)

    async def _invalidate(self, keys: List[str]) -> None:
        if self.on_invalidate is None:
            return
        outcome = self.on_invalidate(keys)
        if inspect.isawaitable(outcome):
            await outcome

    def _cancelled(self, what: str) -> BatchResult:
        self._cancellations += 1
        Logger.info(f"[ORCHESTRATOR] {what} cancelled by user")
        return cancelled_result()

    def _failed(self, tracker: ProgressTracker, what: str, error: BaseException) -> None:
        self._failures += 1
        message = truncate_message(format_error(error))
        tracker.fail(message)
        Logger.error(f"[ORCHESTRATOR] {what} failed: {message}")

    # ═══════════════════════════════════════════════════════════════════════════
    # PROPOSAL
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit_batch_proposal(
        self,
        queue: BatchQueue,
        on_progress: Optional[ProgressCallback] = None,
        memo: Optional[str] = None,
    ) -> BatchResult:
        """
        Propose every queued operation as one vault transaction and approve it.

        Raises:
            ValidationError: empty queue
            StaleTransactionIndexError: another proposer took the index; retry
            ConfirmationTimeoutError: failed or unconfirmed within the budget
        """
        tracker = ProgressTracker(on_progress)
        tracker.advance(ProgressStage.PREPARING)
        try:
            signer = self._require()
            if not len(queue):
                raise ValidationError("Batch is empty")

            Logger.info(
                f"[ORCHESTRATOR] Proposing {len(queue)} operation(s), "
                f"{queue.total_instructions} instruction(s)"
            )
            proposal = await self.assembler().assemble(
                queue.instructions(), vault_index=queue.vault_index or 0, memo=memo
            )

            tracker.advance(ProgressStage.SIGNING)
            tx = await signer.sign_transaction(proposal.message)

            tracker.advance(ProgressStage.SENDING)
            start = time.time()
            signature = await self.rpc.send_transaction(tx, stale_index_possible=True)

            tracker.advance(ProgressStage.CONFIRMING)
            await self.waiter.confirm(signature, stale_index_possible=True)
        except Exception as e:
            if is_user_rejection(e):
                return self._cancelled("Proposal")
            self._failed(tracker, "Proposal", e)
            raise

        self._proposals += 1
        result = BatchResult(
            outcomes=[
                confirmed_outcome(
                    signature, proposal.transaction_index, latency_ms=(time.time() - start) * 1000
                )
            ],
            transaction_index=proposal.transaction_index,
        )
        tracker.advance(ProgressStage.DONE, f"Proposal #{proposal.transaction_index} created")
        Logger.success(
            f"[PROPOSAL] Proposal #{proposal.transaction_index} created with {len(queue)} operation(s)"
        )
        queue.clear()
        await self._invalidate([KEY_TRANSACTIONS, KEY_MULTISIG, KEY_PROPOSAL, KEY_STAKE_ACCOUNTS])
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # APPROVALS
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit_batch_approvals(
        self,
        queue: ApprovalQueue,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Approve every queued proposal the signer has not approved yet, in a
        single transaction.
        """
        tracker = ProgressTracker(on_progress)
        tracker.advance(ProgressStage.PREPARING)
        try:
            signer = self._require()
            batcher = ApprovalBatcher(self.rpc, self.multisig_pda, signer.pubkey(), self.program_id)

            # Statuses are re-read so nothing is approved twice
            items = await batcher.prefilter(queue.indices)
            if not items:
                raise ValidationError("Nothing to approve: every queued proposal is already approved or closed")

            message, size = await batcher.build(items)
            Logger.info(f"[APPROVAL] Approving {len(items)} proposal(s) in one transaction ({size} bytes)")

            tracker.advance(ProgressStage.SIGNING)
            tx = await signer.sign_transaction(message)

            tracker.advance(ProgressStage.SENDING)
            start = time.time()
            signature = await self.rpc.send_transaction(tx)

            tracker.advance(ProgressStage.CONFIRMING)
            await self.waiter.confirm(signature)
        except Exception as e:
            if is_user_rejection(e):
                return self._cancelled("Batch approval")
            self._failed(tracker, "Batch approval", e)
            raise

        self._approval_batches += 1
        latency_ms = (time.time() - start) * 1000
        result = BatchResult(
            outcomes=[confirmed_outcome(signature, item.transaction_index, latency_ms=latency_ms) for item in items]
        )
        tracker.advance(ProgressStage.DONE, f"Approved {len(items)} proposals")
        Logger.success(f"[APPROVAL] Approved {len(items)} proposals")
        queue.clear()
        await self._invalidate([KEY_TRANSACTIONS, KEY_MULTISIG, KEY_PROPOSAL, KEY_TRANSACTION_DETAILS])
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # EXECUTES
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit_batch_executes(
        self,
        queue: ExecuteQueue,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Sign all execute transactions at once, then submit them one by one.

        Individual failures are recorded in the result, never raised.

        Raises:
            NothingToExecuteError: no queued proposal resolved to a known type
        """
        tracker = ProgressTracker(on_progress)
        tracker.advance(ProgressStage.PREPARING)
        try:
            signer = self._require()
            batcher = ExecuteBatcher(
                self.rpc, self.multisig_pda, signer.pubkey(), self.program_id, self.execute_config
            )
            prepared = await batcher.build(queue.items)

            tracker.advance(ProgressStage.SIGNING)
            signed = await batcher.sign_all(signer, prepared)
        except Exception as e:
            if is_user_rejection(e):
                return self._cancelled("Batch execute")
            self._failed(tracker, "Batch execute", e)
            raise

        def on_item(done: int, total: int, index: int) -> None:
            stage = ProgressStage.CONFIRMING if done == total else ProgressStage.SENDING
            tracker.advance(stage, f"Executed {done}/{total} (#{index})")

        tracker.advance(ProgressStage.SENDING, f"Executing {len(prepared)} transaction(s)")
        result = await batcher.submit_all(prepared, signed, self.waiter, on_item=on_item)

        self._executes += result.succeeded
        self._failures += result.failed
        for outcome in result.outcomes:
            if outcome.success:
                queue.remove(outcome.transaction_index)

        summary = f"Executed {result.succeeded}/{len(result.outcomes)} transactions"
        if result.succeeded == 0:
            tracker.fail(truncate_message(result.failures[0].error_message or summary))
        else:
            tracker.advance(ProgressStage.DONE, summary)
            await self._invalidate([KEY_TRANSACTIONS, KEY_MULTISIG, KEY_PROPOSAL])

        if result.failed:
            Logger.warning(f"[EXECUTE] {summary}, {result.failed} failed")
        else:
            Logger.success(f"[EXECUTE] {summary}")
        return result

    def get_stats(self) -> dict:
        return {
            "proposals": self._proposals,
            "approval_batches": self._approval_batches,
            "executes": self._executes,
            "cancellations": self._cancellations,
            "failures": self._failures,
        }
