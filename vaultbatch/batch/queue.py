"""
Batch Queues
============
Session-scoped, in-memory queues the user curates before submitting.

- BatchQueue:    operations for one vault transaction proposal
- ApprovalQueue: proposals to approve in one transaction (max 12)
- ExecuteQueue:  proposals to execute, one transaction each (max 10)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, List, Optional, TypeVar

from solders.instruction import Instruction

from config.settings import Settings
from vaultbatch.shared.errors import BatchFullError, DuplicateItemError, ValidationError
from vaultbatch.batch.operations import Operation, with_id
from vaultbatch.batch.packer import InstructionPacker
from vaultbatch.ledger.multisig import ProposalStatus


# ═══════════════════════════════════════════════════════════════════════════════
# OPERATION QUEUE
# ═══════════════════════════════════════════════════════════════════════════════

class BatchQueue:
    """
    Ordered operations bound for a single proposal.

    Every addition goes through the packer; a refused addition leaves the
    queue untouched.
    """

    def __init__(self, packer: Optional[InstructionPacker] = None):
        self.packer = packer or InstructionPacker()
        self._operations: List[Operation] = []

    # ─── Views ───

    @property
    def operations(self) -> List[Operation]:
        return list(self._operations)

    @property
    def vault_index(self) -> Optional[int]:
        return self._operations[0].vault_index if self._operations else None

    @property
    def total_instructions(self) -> int:
        return sum(op.instruction_count for op in self._operations)

    @property
    def projected_bytes(self) -> int:
        return self.packer.estimate(self.instructions())

    @property
    def max_instructions(self) -> int:
        return self.packer.config.max_instructions

    @property
    def is_full(self) -> bool:
        return self.total_instructions >= self.max_instructions

    def instructions(self) -> List[Instruction]:
        """All instructions in user order."""
        out: List[Instruction] = []
        for op in self._operations:
            out.extend(op.instructions)
        return out

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self):
        return iter(list(self._operations))

    # ─── Mutation ───

    def add(self, operation: Operation) -> Operation:
        """Admit through the packer; raises a ValidationError on refusal."""
        return self.packer.add(self, operation)

    def try_add(self, operation: Operation) -> bool:
        return self.packer.try_add(self, operation)

    def _append(self, operation: Operation) -> Operation:
        # Packer-only entry point, called after admission
        stamped = with_id(operation)
        self._operations.append(stamped)
        return stamped

    def remove(self, operation_id: str) -> bool:
        for i, op in enumerate(self._operations):
            if op.id == operation_id:
                del self._operations[i]
                return True
        return False

    def clear(self) -> None:
        self._operations.clear()


# ═══════════════════════════════════════════════════════════════════════════════
# PROPOSAL QUEUES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ApprovalItem:
    transaction_index: int
    proposal_status: ProposalStatus = ProposalStatus.NONE


@dataclass(frozen=True)
class ExecuteItem:
    transaction_index: int


ItemT = TypeVar("ItemT", ApprovalItem, ExecuteItem)


class IndexedQueue(Generic[ItemT]):
    """Bounded queue keyed by transaction index."""

    def __init__(self, limit: int):
        self.limit = limit
        self._items: List[ItemT] = []

    @property
    def items(self) -> List[ItemT]:
        return list(self._items)

    @property
    def indices(self) -> List[int]:
        return [item.transaction_index for item in self._items]

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.limit

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, transaction_index: int) -> bool:
        return transaction_index in self.indices

    def add(self, item: ItemT) -> ItemT:
        if item.transaction_index < 0:
            raise ValidationError(f"Invalid transaction index {item.transaction_index}")
        if item.transaction_index in self:
            raise DuplicateItemError(f"Transaction #{item.transaction_index} is already queued")
        if self.is_full:
            raise BatchFullError(f"Queue is full ({self.limit} items)")
        self._items.append(item)
        return item

    def try_add(self, item: ItemT) -> bool:
        try:
            self.add(item)
        except ValidationError:
            return False
        return True

    def remove(self, transaction_index: int) -> bool:
        for i, item in enumerate(self._items):
            if item.transaction_index == transaction_index:
                del self._items[i]
                return True
        return False

    def clear(self) -> None:
        self._items.clear()


class ApprovalQueue(IndexedQueue[ApprovalItem]):
    def __init__(self, limit: Optional[int] = None):
        super().__init__(limit or Settings.MAX_BATCH_APPROVALS)


class ExecuteQueue(IndexedQueue[ExecuteItem]):
    def __init__(self, limit: Optional[int] = None):
        super().__init__(limit or Settings.MAX_BATCH_EXECUTES)
