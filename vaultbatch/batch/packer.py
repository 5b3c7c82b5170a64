"""
Instruction Packer
==================
Admission control for batch queues.

Every queued operation is checked against two hard ceilings before it is
accepted:
- total instruction count (default 10)
- projected serialized transaction size (default 1232 bytes)

The size is measured on a fully compiled transaction (deduplicated
account keys, header, placeholder signatures), never by summing raw
instruction bytes.

Usage:
    packer = InstructionPacker()
    if not packer.try_add(queue, operation):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from config.settings import Settings
from vaultbatch.shared.errors import (
    BatchFullError,
    OperationTooLargeError,
    ValidationError,
    VaultMismatchError,
)
from vaultbatch.batch.operations import Operation
from vaultbatch.shared.system.logging import Logger

if TYPE_CHECKING:
    from vaultbatch.batch.queue import BatchQueue


# (instructions) -> serialized transaction size in bytes
SizeEstimator = Callable[[Sequence[Instruction]], int]


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PackerConfig:
    """Ceilings for one batch."""

    max_instructions: int = field(default_factory=lambda: Settings.MAX_BATCH_INSTRUCTIONS)
    max_bytes: int = field(default_factory=lambda: Settings.MAX_TX_BYTES)


class Admission(Enum):
    """Verdict for a single admission attempt."""

    ACCEPTED = "ACCEPTED"
    INSTRUCTION_LIMIT = "INSTRUCTION_LIMIT"
    SIZE_LIMIT = "SIZE_LIMIT"
    OPERATION_TOO_LARGE = "OPERATION_TOO_LARGE"

    @property
    def accepted(self) -> bool:
        return self is Admission.ACCEPTED


# ═══════════════════════════════════════════════════════════════════════════════
# SIZE ESTIMATION
# ═══════════════════════════════════════════════════════════════════════════════

def message_size(message: MessageV0) -> int:
    """Wire size of the transaction `message` becomes once signed."""
    signatures = [Signature.default()] * message.header.num_required_signatures
    return len(bytes(VersionedTransaction.populate(message, signatures)))


def serialized_size(
    instructions: Sequence[Instruction],
    payer: Pubkey,
    lookup_tables: Sequence = (),
) -> int:
    """Size of a v0 transaction carrying `instructions`, with dummy signatures."""
    message = MessageV0.try_compile(
        payer=payer,
        instructions=list(instructions),
        address_lookup_table_accounts=list(lookup_tables),
        recent_blockhash=Hash.default(),
    )
    return message_size(message)


def default_estimator(payer: Optional[Pubkey] = None) -> SizeEstimator:
    """Plain v0 estimate, paid by `payer` (a placeholder key when unknown)."""
    fee_payer = payer or Pubkey.new_unique()

    def estimate(instructions: Sequence[Instruction]) -> int:
        return serialized_size(instructions, fee_payer)

    return estimate


# ═══════════════════════════════════════════════════════════════════════════════
# PACKER
# ═══════════════════════════════════════════════════════════════════════════════

class InstructionPacker:
    """
    Stateless admission checker. The queue is the only thing it mutates,
    and only on acceptance.
    """

    def __init__(
        self,
        config: Optional[PackerConfig] = None,
        estimator: Optional[SizeEstimator] = None,
    ):
        self.config = config or PackerConfig()
        self.estimator = estimator or default_estimator()

    def estimate(self, instructions: Sequence[Instruction]) -> int:
        if not instructions:
            return 0
        return self.estimator(instructions)

    def admit(self, queue: "BatchQueue", operation: Operation) -> Admission:
        """Decide whether `operation` fits; never mutates the queue."""
        own = list(operation.instructions)
        if len(own) > self.config.max_instructions:
            return Admission.OPERATION_TOO_LARGE
        if self.estimate(own) > self.config.max_bytes:
            return Admission.OPERATION_TOO_LARGE

        if queue.total_instructions + len(own) > self.config.max_instructions:
            return Admission.INSTRUCTION_LIMIT

        projected = queue.instructions() + own
        if self.estimate(projected) > self.config.max_bytes:
            return Admission.SIZE_LIMIT

        return Admission.ACCEPTED

    def try_add(self, queue: "BatchQueue", operation: Operation) -> bool:
        try:
            self.add(queue, operation)
        except ValidationError:
            return False
        return True

    def add(self, queue: "BatchQueue", operation: Operation) -> Operation:
        """
        Admit `operation` or raise.

        Raises:
            ValidationError: empty operation
            VaultMismatchError: queue already targets another vault
            OperationTooLargeError: does not fit even an empty batch
            BatchFullError: does not fit alongside the queued operations
        """
        if not operation.instructions:
            raise ValidationError(f"Operation '{operation.label}' has no instructions")

        if queue.vault_index is not None and operation.vault_index != queue.vault_index:
            raise VaultMismatchError(
                f"Operation targets vault {operation.vault_index}, "
                f"queue targets vault {queue.vault_index}"
            )

        verdict = self.admit(queue, operation)
        if verdict is Admission.OPERATION_TOO_LARGE:
            Logger.warning(f"[PACKER] Rejected '{operation.label}': operation too large to batch")
            raise OperationTooLargeError(
                f"Operation '{operation.label}' is too large to batch",
                {"instructions": operation.instruction_count},
            )
        if verdict is Admission.INSTRUCTION_LIMIT:
            Logger.debug(f"[PACKER] Rejected '{operation.label}': instruction limit")
            raise BatchFullError(
                f"Batch is full ({queue.total_instructions}/{self.config.max_instructions} instructions)",
                {"reason": verdict.value},
            )
        if verdict is Admission.SIZE_LIMIT:
            Logger.debug(f"[PACKER] Rejected '{operation.label}': size limit")
            raise BatchFullError(
                f"Batch would exceed {self.config.max_bytes} bytes",
                {"reason": verdict.value},
            )

        return queue._append(operation)
