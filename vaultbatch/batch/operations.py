"""
Batch Operations
================
Immutable units of work a user queues before proposing.
"""

import itertools
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence, Tuple

from solders.instruction import Instruction
from solders.pubkey import Pubkey


class OperationKind(Enum):
    UNSTAKE = "unstake"
    WITHDRAW = "withdraw"
    DELEGATE = "delegate"
    REDELEGATE = "redelegate"
    SPLIT = "split"
    MERGE = "merge"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Operation:
    """A labelled group of vault instructions that must stay together."""

    kind: OperationKind
    instructions: Tuple[Instruction, ...]
    label: str
    description: str = ""
    target: Optional[Pubkey] = None
    vault_index: int = 0
    id: str = ""

    @property
    def instruction_count(self) -> int:
        return len(self.instructions)


_sequence = itertools.count(1)


def next_operation_id() -> str:
    return f"batch-{next(_sequence)}-{int(time.time() * 1000)}"


def make_operation(
    kind: OperationKind,
    instructions: Sequence[Instruction],
    label: str,
    description: str = "",
    target: Optional[Pubkey] = None,
    vault_index: int = 0,
) -> Operation:
    return Operation(
        kind=kind,
        instructions=tuple(instructions),
        label=label,
        description=description,
        target=target,
        vault_index=vault_index,
    )


def with_id(operation: Operation) -> Operation:
    """Stamp a queue id on an operation that does not have one yet."""
    if operation.id:
        return operation
    return replace(operation, id=next_operation_id())
