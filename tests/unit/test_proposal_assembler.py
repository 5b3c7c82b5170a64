"""
Proposal Assembler Unit Tests
=============================
Create + propose + approve wrapped into one outer transaction.

Run with: python -m pytest tests/unit/test_proposal_assembler.py -v
"""

import pytest
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from vaultbatch.ledger import multisig, stake_program
from vaultbatch.ledger.memo import MEMO_PROGRAM_ID


def _assembler(rpc, multisig_pda, signer, **kwargs):
    from vaultbatch.batch.proposal_assembler import ProposalAssembler

    return ProposalAssembler(rpc, multisig_pda, signer.pubkey(), **kwargs)


class TestAssemble:

    @pytest.mark.asyncio
    async def test_uses_counter_plus_one(self, rpc, multisig_pda, vault_pda, signer):
        assembler = _assembler(rpc, multisig_pda, signer)
        proposal = await assembler.assemble([stake_program.deactivate(Pubkey.new_unique(), vault_pda)])

        assert proposal.transaction_index == 8
        assert proposal.size <= 1232

    @pytest.mark.asyncio
    async def test_outer_instruction_order(self, rpc, multisig_pda, vault_pda, signer):
        assembler = _assembler(rpc, multisig_pda, signer)
        proposal = await assembler.assemble([stake_program.deactivate(Pubkey.new_unique(), vault_pda)])

        message = proposal.message
        keys = message.account_keys
        discriminators = [bytes(ix.data)[:8] for ix in message.instructions]
        assert discriminators == [
            multisig.IX_VAULT_TRANSACTION_CREATE,
            multisig.IX_PROPOSAL_CREATE,
            multisig.IX_PROPOSAL_APPROVE,
        ]
        assert keys[0] == signer.pubkey()
        assert message.recent_blockhash == rpc.blockhash

    @pytest.mark.asyncio
    async def test_index_is_read_fresh_each_time(self, rpc, multisig_pda, vault_pda, signer):
        from tests.mocks.ledger_accounts import multisig_account_data

        assembler = _assembler(rpc, multisig_pda, signer)
        ixs = [stake_program.deactivate(Pubkey.new_unique(), vault_pda)]
        first = await assembler.assemble(ixs)

        # Another proposer landed in between
        rpc.set_account(multisig_pda, multisig_account_data(transaction_index=8))
        second = await assembler.assemble(ixs)

        assert (first.transaction_index, second.transaction_index) == (8, 9)

    @pytest.mark.asyncio
    async def test_missing_multisig(self, rpc, signer):
        from vaultbatch.shared.errors import NoMultisigSelectedError

        assembler = _assembler(rpc, Pubkey.new_unique(), signer)
        with pytest.raises(NoMultisigSelectedError):
            await assembler.assemble([])

    @pytest.mark.asyncio
    async def test_oversized_proposal(self, rpc, multisig_pda, signer):
        from vaultbatch.shared.errors import TransactionTooLargeError

        assembler = _assembler(rpc, multisig_pda, signer)
        blob = Instruction(MEMO_PROGRAM_ID, b"x" * 1200, [])
        with pytest.raises(TransactionTooLargeError):
            await assembler.assemble([blob])


class TestEstimator:

    def test_estimate_includes_envelope(self, rpc, multisig_pda, vault_pda, signer):
        from vaultbatch.batch.packer import default_estimator

        assembler = _assembler(rpc, multisig_pda, signer)
        ixs = [stake_program.deactivate(Pubkey.new_unique(), vault_pda)]

        assert assembler.estimate_size(ixs) > default_estimator()(ixs)

    def test_estimator_feeds_packer(self, rpc, multisig_pda, signer):
        from vaultbatch.batch.operations import OperationKind, make_operation
        from vaultbatch.batch.packer import Admission, InstructionPacker
        from vaultbatch.batch.queue import BatchQueue

        assembler = _assembler(rpc, multisig_pda, signer)
        packer = InstructionPacker(estimator=assembler.estimator(0))
        # Fits alone as a plain transaction, not once wrapped in a proposal
        op = make_operation(OperationKind.CUSTOM, [Instruction(MEMO_PROGRAM_ID, b"x" * 1000, [])], label="Blob")

        assert packer.admit(BatchQueue(packer), op) is Admission.OPERATION_TOO_LARGE

    def test_estimate_counts_proposal_memo(self, rpc, multisig_pda, vault_pda, signer):
        from vaultbatch.batch.operations import OperationKind, make_operation
        from vaultbatch.batch.packer import Admission, InstructionPacker, PackerConfig
        from vaultbatch.batch.queue import BatchQueue

        assembler = _assembler(rpc, multisig_pda, signer)
        ixs = [stake_program.deactivate(Pubkey.new_unique(), vault_pda)]
        memo = "Quarterly unstake"
        plain = assembler.estimate_size(ixs)

        assert assembler.estimate_size(ixs, memo=memo) >= plain + len(memo)

        # Exactly at the ceiling without the memo, over it with the memo
        config = PackerConfig(max_bytes=plain)
        op = make_operation(OperationKind.UNSTAKE, ixs, label="Unstake")
        without_memo = InstructionPacker(config=config, estimator=assembler.estimator(0))
        with_memo = InstructionPacker(config=config, estimator=assembler.estimator(0, memo))

        assert without_memo.admit(BatchQueue(without_memo), op) is Admission.ACCEPTED
        assert with_memo.admit(BatchQueue(with_memo), op) is Admission.OPERATION_TOO_LARGE
