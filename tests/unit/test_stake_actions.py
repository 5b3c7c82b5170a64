"""
Stake Operation Builder Unit Tests
==================================
Eligibility checks, instruction composition and labels for stake operations.

Run with: python -m pytest tests/unit/test_stake_actions.py -v
"""

import pytest
from solders.pubkey import Pubkey

from vaultbatch.batch.operations import OperationKind
from vaultbatch.ledger import stake_program
from vaultbatch.ledger.memo import MEMO_PROGRAM_ID
from vaultbatch.staking.lifecycle import StakeState

VAULT = Pubkey.new_unique()


def _stake_ix_kind(ix) -> int:
    return int.from_bytes(bytes(ix.data)[:4], "little")


@pytest.fixture
def builder():
    from vaultbatch.staking.metadata_cache import MetadataCache
    from vaultbatch.staking.stake_actions import StakeOperationBuilder

    return StakeOperationBuilder(VAULT, vault_index=0, metadata=MetadataCache())


class TestUnstake:

    def test_builds_single_deactivate(self, builder, make_stake_info):
        info = make_stake_info(state=StakeState.ACTIVE)
        op = builder.unstake(info)

        assert op.kind is OperationKind.UNSTAKE
        assert op.instruction_count == 1
        assert _stake_ix_kind(op.instructions[0]) == stake_program.StakeInstruction.DEACTIVATE
        assert op.target == info.address

    def test_rejects_inactive_account(self, builder, make_stake_info):
        from vaultbatch.shared.errors import IneligibleAccountError

        with pytest.raises(IneligibleAccountError):
            builder.unstake(make_stake_info(state=StakeState.INACTIVE))

    def test_memo_appends_vault_signed_note(self, builder, make_stake_info):
        op = builder.unstake(make_stake_info(), memo="rebalance Q3")

        assert op.instruction_count == 2
        memo_ix = op.instructions[-1]
        assert memo_ix.program_id == MEMO_PROGRAM_ID
        assert bytes(memo_ix.data) == b"rebalance Q3"
        assert memo_ix.accounts[0].pubkey == VAULT

    def test_blank_memo_adds_nothing(self, builder, make_stake_info):
        assert builder.unstake(make_stake_info(), memo="   ").instruction_count == 1


class TestWithdraw:

    def test_full_withdrawal_of_inactive_account(self, builder, make_stake_info):
        info = make_stake_info(state=StakeState.INACTIVE, balance=5_000_000_000)
        op = builder.withdraw(info)

        ix = op.instructions[0]
        assert _stake_ix_kind(ix) == stake_program.StakeInstruction.WITHDRAW
        assert int.from_bytes(bytes(ix.data)[4:12], "little") == 5_000_000_000

    def test_full_withdrawal_requires_inactive(self, builder, make_stake_info):
        from vaultbatch.shared.errors import IneligibleAccountError

        with pytest.raises(IneligibleAccountError):
            builder.withdraw(make_stake_info(state=StakeState.ACTIVE))

    def test_excess_only_while_delegated(self, builder, make_stake_info):
        from vaultbatch.shared.errors import InvalidAmountError

        info = make_stake_info(
            state=StakeState.ACTIVE, balance=10_000_000, delegated_amount=8_000_000, rent_exempt_reserve=1_000_000
        )
        assert builder.withdraw(info, 1_000_000).instruction_count == 1
        with pytest.raises(InvalidAmountError):
            builder.withdraw(info, 1_000_001)


class TestDelegateAndRedelegate:

    def test_delegate_creates_seeded_account(self, builder):
        vote = Pubkey.new_unique()
        op = builder.delegate(vote, 2_000_000_000, seed="1700000000000")

        # create_account_with_seed, initialize, delegate
        assert op.instruction_count == 3
        assert op.target == Pubkey.create_with_seed(VAULT, "1700000000000", stake_program.STAKE_PROGRAM_ID)
        assert _stake_ix_kind(op.instructions[-1]) == stake_program.StakeInstruction.DELEGATE_STAKE

    def test_delegate_rejects_non_positive_amount(self, builder):
        from vaultbatch.shared.errors import InvalidAmountError

        with pytest.raises(InvalidAmountError):
            builder.delegate(Pubkey.new_unique(), 0)

    def test_delegate_label_uses_validator_name(self, builder):
        vote = Pubkey.new_unique()
        builder.metadata.put_validator(vote, name="Everstake")

        assert builder.delegate(vote, 1_000).label == "Delegate to Everstake"

    def test_redelegate_requires_inactive(self, builder, make_stake_info):
        from vaultbatch.shared.errors import IneligibleAccountError

        with pytest.raises(IneligibleAccountError):
            builder.redelegate(make_stake_info(state=StakeState.DEACTIVATING), Pubkey.new_unique())

        op = builder.redelegate(make_stake_info(state=StakeState.INACTIVE), Pubkey.new_unique())
        assert op.kind is OperationKind.REDELEGATE


class TestSplit:

    def test_split_into_seeded_account(self, builder, make_stake_info):
        info = make_stake_info(balance=10_000_000_000)
        op = builder.split(info, 3_000_000_000, seed="split-1700000000000")

        # allocate_with_seed, split
        assert op.instruction_count == 2
        assert op.target == Pubkey.create_with_seed(VAULT, "split-1700000000000", stake_program.STAKE_PROGRAM_ID)

    def test_rent_prefund_adds_transfer(self, builder, make_stake_info):
        op = builder.split(make_stake_info(), 1_000_000_000, seed="split-1", rent_lamports=2_282_880)
        assert op.instruction_count == 3

    def test_default_seed_fits_limit(self, builder, make_stake_info):
        op = builder.split(make_stake_info(), 1_000_000_000)
        assert op.target is not None

    def test_amount_must_leave_reserve_and_buffer(self, builder, make_stake_info):
        from vaultbatch.shared.errors import InvalidAmountError

        info = make_stake_info(balance=1_000_000_000, rent_exempt_reserve=2_282_880)
        max_split = 1_000_000_000 - 2_282_880 - 100_000_000
        assert builder.split(info, max_split, seed="split-a").instruction_count == 2
        with pytest.raises(InvalidAmountError):
            builder.split(info, max_split + 1, seed="split-b")

    def test_too_small_account(self, builder, make_stake_info):
        from vaultbatch.shared.errors import IneligibleAccountError

        with pytest.raises(IneligibleAccountError):
            builder.split(make_stake_info(balance=50_000_000, rent_exempt_reserve=2_282_880), 1)


class TestMerge:

    def test_merge_compatible(self, builder, make_stake_info):
        validator, authority = Pubkey.new_unique(), Pubkey.new_unique()
        dest = make_stake_info(validator=validator, authority=authority)
        src = make_stake_info(validator=validator, authority=authority)

        op = builder.merge(dest, src)
        assert _stake_ix_kind(op.instructions[0]) == stake_program.StakeInstruction.MERGE
        assert op.target == dest.address

    def test_merge_incompatible(self, builder, make_stake_info):
        from vaultbatch.shared.errors import IncompatibleMergeError

        with pytest.raises(IncompatibleMergeError):
            builder.merge(make_stake_info(), make_stake_info())

    def test_bulk_merge_into_largest_per_group(self, builder, make_stake_info):
        validator, other, authority = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
        small = make_stake_info(validator=validator, authority=authority, balance=2_000_000_000)
        large = make_stake_info(validator=validator, authority=authority, balance=9_000_000_000)
        mid = make_stake_info(validator=validator, authority=authority, balance=5_000_000_000)
        lone = make_stake_info(validator=other, authority=authority)

        ops = builder.bulk_merge([small, large, mid, lone])

        assert len(ops) == 2
        assert all(op.target == large.address for op in ops)

    def test_count_merge_eligible(self, make_stake_info):
        from vaultbatch.staking.stake_actions import count_merge_eligible

        validator = Pubkey.new_unique()
        accounts = [make_stake_info(validator=validator) for _ in range(3)] + [make_stake_info()]
        assert count_merge_eligible(accounts) == 2
        assert count_merge_eligible(accounts[:1]) == 0


class TestLabels:

    def test_label_falls_back_to_short_address(self, make_stake_info):
        from vaultbatch.staking.stake_actions import stake_account_label

        info = make_stake_info(state=StakeState.INACTIVE)
        assert stake_account_label(info) == f"{str(info.address)[:8]}..."

    def test_label_prefers_validator_name(self, make_stake_info):
        from vaultbatch.staking.metadata_cache import MetadataCache
        from vaultbatch.staking.stake_actions import stake_account_label

        cache = MetadataCache()
        info = make_stake_info()
        cache.put_validator(info.delegated_validator, name="Jito")

        assert stake_account_label(info, cache) == "Jito"
        assert stake_account_label(make_stake_info(), cache).endswith("...")

    def test_format_sol(self):
        from vaultbatch.staking.stake_actions import format_sol

        assert format_sol(1_234_500_000_000) == "1,234.50 SOL"
