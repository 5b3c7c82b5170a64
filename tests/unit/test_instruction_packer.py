"""
Instruction Packer Unit Tests
=============================
Admission against the instruction-count and byte ceilings.

Run with: python -m pytest tests/unit/test_instruction_packer.py -v
"""

import pytest
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from vaultbatch.batch.operations import OperationKind, make_operation
from vaultbatch.ledger import stake_program
from vaultbatch.ledger.memo import MEMO_PROGRAM_ID

AUTHORITY = Pubkey.new_unique()


def unstake_op(count: int = 1, vault_index: int = 0):
    """Operation of `count` deactivate instructions on distinct accounts."""
    ixs = [stake_program.deactivate(Pubkey.new_unique(), AUTHORITY) for _ in range(count)]
    return make_operation(OperationKind.UNSTAKE, ixs, label=f"Unstake x{count}", vault_index=vault_index)


def blob_op(size: int):
    """Operation whose single instruction carries `size` bytes of data."""
    ix = Instruction(MEMO_PROGRAM_ID, b"x" * size, [])
    return make_operation(OperationKind.CUSTOM, [ix], label=f"Blob {size}")


class TestInstructionLimit:
    """Σ instruction count never exceeds the configured maximum."""

    def test_nine_of_ten_rejects_two_accepts_one(self):
        """9/10 queued: a 2-instruction op is refused, a 1-instruction op lands at exactly 10/10."""
        from vaultbatch.batch.queue import BatchQueue
        from vaultbatch.shared.errors import BatchFullError

        queue = BatchQueue()
        queue.add(unstake_op(9))
        assert queue.total_instructions == 9

        with pytest.raises(BatchFullError):
            queue.add(unstake_op(2))
        assert queue.total_instructions == 9
        assert len(queue) == 1

        queue.add(unstake_op(1))
        assert queue.total_instructions == 10
        assert queue.is_full

    def test_try_add_reports_refusal_without_mutation(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        queue.add(unstake_op(10))
        before = queue.operations

        assert queue.try_add(unstake_op(1)) is False
        assert queue.operations == before

    def test_admit_verdicts(self):
        from vaultbatch.batch.packer import Admission, InstructionPacker
        from vaultbatch.batch.queue import BatchQueue

        packer = InstructionPacker()
        queue = BatchQueue(packer)
        queue.add(unstake_op(8))

        assert packer.admit(queue, unstake_op(2)) is Admission.ACCEPTED
        assert packer.admit(queue, unstake_op(3)) is Admission.INSTRUCTION_LIMIT
        assert packer.admit(queue, unstake_op(11)) is Admission.OPERATION_TOO_LARGE


class TestByteLimit:
    """Projected serialized size never exceeds the byte ceiling."""

    def test_operation_too_large_even_for_empty_queue(self):
        """An oversized op gets a distinct error, not 'queue full'."""
        from vaultbatch.batch.queue import BatchQueue
        from vaultbatch.shared.errors import BatchFullError, OperationTooLargeError

        queue = BatchQueue()
        with pytest.raises(OperationTooLargeError) as exc_info:
            queue.add(blob_op(1300))

        assert not isinstance(exc_info.value, BatchFullError)
        assert "too large to batch" in str(exc_info.value)
        assert len(queue) == 0

    def test_size_limit_refuses_second_large_operation(self):
        from vaultbatch.batch.packer import Admission, InstructionPacker
        from vaultbatch.batch.queue import BatchQueue
        from vaultbatch.shared.errors import BatchFullError

        packer = InstructionPacker()
        queue = BatchQueue(packer)
        queue.add(blob_op(700))

        second = blob_op(700)
        assert packer.admit(queue, second) is Admission.SIZE_LIMIT
        with pytest.raises(BatchFullError):
            queue.add(second)
        assert queue.projected_bytes <= packer.config.max_bytes

    def test_size_counts_deduplicated_account_keys(self):
        """Re-using the same account costs less than touching a new one."""
        from vaultbatch.batch.packer import InstructionPacker

        packer = InstructionPacker()
        stake = Pubkey.new_unique()
        same = [stake_program.deactivate(stake, AUTHORITY) for _ in range(3)]
        distinct = [stake_program.deactivate(Pubkey.new_unique(), AUTHORITY) for _ in range(3)]

        assert packer.estimate(same) < packer.estimate(distinct)
        assert packer.estimate([]) == 0

    def test_custom_ceiling(self):
        from vaultbatch.batch.packer import InstructionPacker, PackerConfig
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue(InstructionPacker(PackerConfig(max_instructions=3, max_bytes=1232)))
        assert queue.try_add(unstake_op(3))
        assert not queue.try_add(unstake_op(1))
        assert queue.max_instructions == 3


class TestQueueMutation:
    """Add / remove round-trips and queue-level guards."""

    def test_remove_restores_totals(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        queue.add(unstake_op(2))
        count_before = queue.total_instructions
        bytes_before = queue.projected_bytes

        added = queue.add(unstake_op(3))
        assert queue.total_instructions == count_before + 3

        assert queue.remove(added.id) is True
        assert queue.total_instructions == count_before
        assert queue.projected_bytes == bytes_before

    def test_remove_unknown_id(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        queue.add(unstake_op(1))
        assert queue.remove("batch-does-not-exist") is False
        assert len(queue) == 1

    def test_added_operations_get_unique_ids(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        first = queue.add(unstake_op(1))
        second = queue.add(unstake_op(1))

        assert first.id.startswith("batch-")
        assert first.id != second.id

    def test_instructions_keep_user_order(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        a = queue.add(unstake_op(2))
        b = queue.add(unstake_op(1))

        assert queue.instructions() == list(a.instructions) + list(b.instructions)

    def test_rejects_operation_for_other_vault(self):
        from vaultbatch.batch.queue import BatchQueue
        from vaultbatch.shared.errors import VaultMismatchError

        queue = BatchQueue()
        queue.add(unstake_op(1, vault_index=0))
        with pytest.raises(VaultMismatchError):
            queue.add(unstake_op(1, vault_index=1))

    def test_rejects_empty_operation(self):
        from vaultbatch.batch.queue import BatchQueue
        from vaultbatch.shared.errors import ValidationError

        queue = BatchQueue()
        with pytest.raises(ValidationError):
            queue.add(make_operation(OperationKind.CUSTOM, [], label="Nothing"))

    def test_clear(self):
        from vaultbatch.batch.queue import BatchQueue

        queue = BatchQueue()
        queue.add(unstake_op(4))
        queue.clear()
        assert len(queue) == 0
        assert queue.vault_index is None
        assert queue.projected_bytes == 0
