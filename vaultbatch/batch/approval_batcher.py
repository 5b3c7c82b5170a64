"""
Approval Batcher
================
Approves many existing proposals in one transaction.

Per surviving proposal:
    proposal_create    if no proposal account exists yet
    proposal_activate  if the proposal is still a draft
    proposal_approve   always

Pre-filter reads fan out concurrently; a proposal whose fetch fails is
treated as having no proposal account.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Sequence, Tuple

from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey

from config.settings import Settings
from vaultbatch.batch.packer import message_size
from vaultbatch.batch.queue import ApprovalItem
from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.ledger import multisig
from vaultbatch.ledger.multisig import ProposalAccount, ProposalStatus
from vaultbatch.shared.errors import NoMultisigSelectedError, TransactionTooLargeError
from vaultbatch.shared.system.logging import Logger


class ApprovalBatcher:
    """
    Usage:
        batcher = ApprovalBatcher(rpc, multisig_pda, member=signer.pubkey())
        items = await batcher.prefilter(await batcher.pending_indices())
        message = await batcher.build(items)
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        multisig_pda: Pubkey,
        member: Pubkey,
        program_id: Pubkey = multisig.DEFAULT_PROGRAM_ID,
        max_bytes: Optional[int] = None,
    ):
        self.rpc = rpc
        self.multisig_pda = multisig_pda
        self.member = member
        self.program_id = program_id
        self.max_bytes = max_bytes or Settings.MAX_TX_BYTES

    # ═══════════════════════════════════════════════════════════════════════════
    # PRE-FILTER
    # ═══════════════════════════════════════════════════════════════════════════

    async def pending_indices(self) -> List[int]:
        """Indices after the stale watermark, up to the current counter."""
        data = await self.rpc.get_account_data(self.multisig_pda)
        if data is None:
            raise NoMultisigSelectedError(f"Multisig {self.multisig_pda} not found")
        account = multisig.decode_multisig(data)
        return list(range(account.stale_transaction_index + 1, account.transaction_index + 1))

    async def fetch_proposal(self, transaction_index: int) -> Optional[ProposalAccount]:
        proposal_pda, _ = multisig.get_proposal_pda(self.multisig_pda, transaction_index, self.program_id)
        data = await self.rpc.get_account_data(proposal_pda)
        if data is None:
            return None
        return multisig.decode_proposal(data)

    async def prefilter(self, indices: Iterable[int]) -> List[ApprovalItem]:
        """
        Items that still need this member's vote, in index order.

        Drops proposals past voting (Approved, Rejected, Executing,
        Executed, Cancelled) and proposals already approved by the member.
        """
        ordered = sorted(set(indices))
        results = await asyncio.gather(
            *(self.fetch_proposal(i) for i in ordered),
            return_exceptions=True,
        )

        items: List[ApprovalItem] = []
        for index, result in zip(ordered, results):
            if isinstance(result, BaseException):
                Logger.debug(f"[APPROVAL] Proposal #{index} fetch failed ({result}), treating as None")
                result = None

            status = result.status if result is not None else ProposalStatus.NONE
            if not status.is_approvable:
                continue
            if result is not None and result.has_approved(self.member):
                continue
            items.append(ApprovalItem(transaction_index=index, proposal_status=status))

        Logger.debug(f"[APPROVAL] Pre-filter kept {len(items)}/{len(ordered)} proposal(s)")
        return items

    # ═══════════════════════════════════════════════════════════════════════════
    # BUILD
    # ═══════════════════════════════════════════════════════════════════════════

    def build_instructions(self, items: Sequence[ApprovalItem]) -> List[Instruction]:
        instructions: List[Instruction] = []
        for item in items:
            index = item.transaction_index
            if item.proposal_status == ProposalStatus.NONE:
                instructions.append(
                    multisig.proposal_create(
                        self.multisig_pda, index, creator=self.member, program_id=self.program_id
                    )
                )
            elif item.proposal_status == ProposalStatus.DRAFT:
                instructions.append(
                    multisig.proposal_activate(
                        self.multisig_pda, index, member=self.member, program_id=self.program_id
                    )
                )
            instructions.append(
                multisig.proposal_approve(
                    self.multisig_pda, index, member=self.member, program_id=self.program_id
                )
            )
        return instructions

    async def build(self, items: Sequence[ApprovalItem]) -> Tuple[MessageV0, int]:
        """
        Compile one approval transaction with a fresh blockhash.

        Returns:
            (message, serialized size)

        Raises:
            TransactionTooLargeError: over the byte ceiling; select fewer proposals
        """
        instructions = self.build_instructions(items)
        blockhash = await self.rpc.get_latest_blockhash()
        message = MessageV0.try_compile(
            payer=self.member,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )

        size = message_size(message)
        Logger.debug(f"[APPROVAL] Transaction size: {size} bytes for {len(items)} proposal(s)")
        if size > self.max_bytes:
            raise TransactionTooLargeError(
                f"Transaction too large ({size} bytes). Select fewer proposals.",
                {"size": size, "limit": self.max_bytes},
            )
        return message, size
