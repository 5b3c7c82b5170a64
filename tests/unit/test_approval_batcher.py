"""
Approval Batcher Unit Tests
===========================
Pre-filtering and single-transaction approval composition.

Run with: python -m pytest tests/unit/test_approval_batcher.py -v
"""

import pytest

from vaultbatch.ledger import multisig
from vaultbatch.ledger.multisig import ProposalStatus


@pytest.fixture
def seeded(rpc, multisig_pda, signer):
    """
    Proposals 1..5:
        1 Active, already approved by the signer
        2 Draft
        3 no proposal account
        4 Executed
        5 fetch fails
    """
    from tests.mocks.ledger_accounts import proposal_account_data

    def put(index, status, approved=()):
        pda, _ = multisig.get_proposal_pda(multisig_pda, index)
        rpc.set_account(pda, proposal_account_data(multisig_pda, index, status, approved))

    put(1, ProposalStatus.ACTIVE, approved=[signer.pubkey()])
    put(2, ProposalStatus.DRAFT)
    put(4, ProposalStatus.EXECUTED)
    rpc.fail_account(multisig.get_proposal_pda(multisig_pda, 5)[0])
    return rpc


def _batcher(rpc, multisig_pda, signer, **kwargs):
    from vaultbatch.batch.approval_batcher import ApprovalBatcher

    return ApprovalBatcher(rpc, multisig_pda, signer.pubkey(), **kwargs)


class TestPrefilter:

    @pytest.mark.asyncio
    async def test_never_reapproves(self, seeded, multisig_pda, signer):
        items = await _batcher(seeded, multisig_pda, signer).prefilter([1, 2, 3, 4, 5])

        assert [i.transaction_index for i in items] == [2, 3, 5]
        assert 1 not in [i.transaction_index for i in items]

    @pytest.mark.asyncio
    async def test_failed_fetch_counts_as_no_proposal(self, seeded, multisig_pda, signer):
        items = await _batcher(seeded, multisig_pda, signer).prefilter([5])

        assert len(items) == 1
        assert items[0].proposal_status is ProposalStatus.NONE

    @pytest.mark.asyncio
    async def test_statuses_carried_on_items(self, seeded, multisig_pda, signer):
        items = await _batcher(seeded, multisig_pda, signer).prefilter([3, 2, 2])

        assert [(i.transaction_index, i.proposal_status) for i in items] == [
            (2, ProposalStatus.DRAFT),
            (3, ProposalStatus.NONE),
        ]

    @pytest.mark.asyncio
    async def test_pending_indices_from_stale_watermark(self, rpc, multisig_pda, signer):
        from tests.mocks.ledger_accounts import multisig_account_data

        rpc.set_account(multisig_pda, multisig_account_data(transaction_index=9, stale_transaction_index=6))
        assert await _batcher(rpc, multisig_pda, signer).pending_indices() == [7, 8, 9]


class TestBuild:

    def test_instruction_composition(self, multisig_pda, signer, rpc):
        from vaultbatch.batch.queue import ApprovalItem

        items = [
            ApprovalItem(10, ProposalStatus.NONE),
            ApprovalItem(11, ProposalStatus.DRAFT),
            ApprovalItem(12, ProposalStatus.ACTIVE),
        ]
        ixs = _batcher(rpc, multisig_pda, signer).build_instructions(items)

        assert [bytes(ix.data)[:8] for ix in ixs] == [
            multisig.IX_PROPOSAL_CREATE,
            multisig.IX_PROPOSAL_APPROVE,
            multisig.IX_PROPOSAL_ACTIVATE,
            multisig.IX_PROPOSAL_APPROVE,
            multisig.IX_PROPOSAL_APPROVE,
        ]

    @pytest.mark.asyncio
    async def test_single_transaction_for_all_items(self, rpc, multisig_pda, signer):
        from vaultbatch.batch.queue import ApprovalItem

        items = [ApprovalItem(i, ProposalStatus.ACTIVE) for i in range(1, 6)]
        message, size = await _batcher(rpc, multisig_pda, signer).build(items)

        assert len(message.instructions) == 5
        assert size <= 1232
        assert rpc.blockhash_requests == 1

    @pytest.mark.asyncio
    async def test_oversized_batch_fails_fast(self, rpc, multisig_pda, signer):
        from vaultbatch.batch.queue import ApprovalItem
        from vaultbatch.shared.errors import TransactionTooLargeError

        items = [ApprovalItem(i) for i in range(1, 13)]
        with pytest.raises(TransactionTooLargeError) as exc_info:
            await _batcher(rpc, multisig_pda, signer, max_bytes=400).build(items)

        assert "Select fewer proposals" in str(exc_info.value)
        assert rpc.sent == []
