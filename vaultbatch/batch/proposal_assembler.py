"""
Proposal Assembler
==================
Builds the single outer transaction that proposes a packed batch:

    vault_transaction_create  (inner message, fee payer = vault)
    proposal_create
    proposal_approve          (creator votes immediately)

The transaction index is read, never reserved: a racing proposer makes
the on-chain create fail, and the caller retries with a fresh read.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey

from config.settings import Settings
from vaultbatch.shared.errors import NoMultisigSelectedError, TransactionTooLargeError
from vaultbatch.batch.packer import SizeEstimator, message_size
from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.ledger import multisig
from vaultbatch.ledger.borsh import LayoutError
from vaultbatch.shared.system.logging import Logger


@dataclass(frozen=True)
class AssembledProposal:
    transaction_index: int
    vault_index: int
    message: MessageV0
    size: int


class ProposalAssembler:
    """
    Usage:
        assembler = ProposalAssembler(rpc, multisig_pda, creator=signer.pubkey())
        proposal = await assembler.assemble(queue.instructions(), vault_index=0)
        tx = await signer.sign_transaction(proposal.message)
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        multisig_pda: Pubkey,
        creator: Pubkey,
        program_id: Pubkey = multisig.DEFAULT_PROGRAM_ID,
        max_bytes: Optional[int] = None,
    ):
        self.rpc = rpc
        self.multisig_pda = multisig_pda
        self.creator = creator
        self.program_id = program_id
        self.max_bytes = max_bytes or Settings.MAX_TX_BYTES

    async def read_multisig(self) -> multisig.MultisigAccount:
        data = await self.rpc.get_account_data(self.multisig_pda)
        if data is None:
            raise NoMultisigSelectedError(f"Multisig {self.multisig_pda} not found")
        try:
            return multisig.decode_multisig(data)
        except LayoutError as e:
            raise NoMultisigSelectedError(f"{self.multisig_pda} is not a multisig: {e}") from e

    async def next_transaction_index(self) -> int:
        """Counter + 1, read fresh on every call."""
        account = await self.read_multisig()
        return account.transaction_index + 1

    def build_instructions(
        self,
        instructions: Sequence[Instruction],
        transaction_index: int,
        vault_index: int = 0,
        memo: Optional[str] = None,
    ) -> List[Instruction]:
        """The create / propose / approve triple, in execution order."""
        vault_pda, _ = multisig.get_vault_pda(self.multisig_pda, vault_index, self.program_id)
        inner = multisig.compile_vault_message(instructions, vault_pda)
        return [
            multisig.vault_transaction_create(
                self.multisig_pda,
                transaction_index,
                creator=self.creator,
                vault_index=vault_index,
                transaction_message=inner,
                memo=memo,
                program_id=self.program_id,
            ),
            multisig.proposal_create(
                self.multisig_pda,
                transaction_index,
                creator=self.creator,
                program_id=self.program_id,
            ),
            multisig.proposal_approve(
                self.multisig_pda,
                transaction_index,
                member=self.creator,
                program_id=self.program_id,
            ),
        ]

    def compile(self, outer: Sequence[Instruction], blockhash: Hash) -> MessageV0:
        return MessageV0.try_compile(
            payer=self.creator,
            instructions=list(outer),
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )

    def estimate_size(
        self,
        instructions: Sequence[Instruction],
        vault_index: int = 0,
        memo: Optional[str] = None,
    ) -> int:
        """Wire size of the full proposal transaction wrapping `instructions`."""
        # Index is a fixed-width u64, so any value gives the same size
        outer = self.build_instructions(instructions, transaction_index=1, vault_index=vault_index, memo=memo)
        return message_size(self.compile(outer, Hash.default()))

    def estimator(self, vault_index: int = 0, memo: Optional[str] = None) -> SizeEstimator:
        """Size estimator for an InstructionPacker feeding this assembler; pass the proposal memo."""
        def estimate(instructions: Sequence[Instruction]) -> int:
            return self.estimate_size(instructions, vault_index, memo)

        return estimate

    async def assemble(
        self,
        instructions: Sequence[Instruction],
        vault_index: int = 0,
        memo: Optional[str] = None,
    ) -> AssembledProposal:
        """
        Read the index, wrap, fetch a blockhash last, and size-check.

        Raises:
            NoMultisigSelectedError: multisig account missing
            TransactionTooLargeError: outer transaction over the ceiling
        """
        transaction_index = await self.next_transaction_index()
        outer = self.build_instructions(instructions, transaction_index, vault_index, memo)

        blockhash = await self.rpc.get_latest_blockhash()
        message = self.compile(outer, blockhash)

        size = message_size(message)
        if size > self.max_bytes:
            raise TransactionTooLargeError(
                f"Proposal transaction is {size} bytes (limit {self.max_bytes})",
                {"size": size, "limit": self.max_bytes},
            )

        Logger.debug(
            f"[PROPOSAL] Assembled #{transaction_index}: {len(instructions)} inner ixs, {size} bytes"
        )
        return AssembledProposal(
            transaction_index=transaction_index,
            vault_index=vault_index,
            message=message,
            size=size,
        )
