"""
Batch Engine
============
Turns a curated queue of vault operations into size-bounded, signed and
submitted transactions.

Components:
- InstructionPacker: admission against count and byte ceilings
- ProposalAssembler: create + propose + approve in one transaction
- ApprovalBatcher: many approvals in one transaction
- ExecuteBatcher: one execute per transaction, signed together
- ConfirmationWaiter: bounded finality polling
- BatchOrchestrator: drives the above with progress reporting
"""

from vaultbatch.batch.operations import Operation, OperationKind, make_operation

from vaultbatch.batch.packer import (
    Admission,
    InstructionPacker,
    PackerConfig,
)

from vaultbatch.batch.queue import (
    ApprovalItem,
    ApprovalQueue,
    BatchQueue,
    ExecuteItem,
    ExecuteQueue,
)

from vaultbatch.batch.proposal_assembler import ProposalAssembler, AssembledProposal
from vaultbatch.batch.approval_batcher import ApprovalBatcher
from vaultbatch.batch.execute_batcher import ExecuteBatcher, ExecuteConfig, TransactionKind
from vaultbatch.batch.confirmation import ConfirmationWaiter, ConfirmationConfig
from vaultbatch.batch.progress import Progress, ProgressStage, ProgressTracker
from vaultbatch.batch.results import BatchResult, TransactionOutcome, OutcomeStatus
from vaultbatch.batch.orchestrator import BatchOrchestrator


__all__ = [
    # Operations
    "Operation",
    "OperationKind",
    "make_operation",
    # Packing
    "Admission",
    "InstructionPacker",
    "PackerConfig",
    # Queues
    "ApprovalItem",
    "ApprovalQueue",
    "BatchQueue",
    "ExecuteItem",
    "ExecuteQueue",
    # Builders
    "ProposalAssembler",
    "AssembledProposal",
    "ApprovalBatcher",
    "ExecuteBatcher",
    "ExecuteConfig",
    "TransactionKind",
    # Submission
    "ConfirmationWaiter",
    "ConfirmationConfig",
    "Progress",
    "ProgressStage",
    "ProgressTracker",
    "BatchResult",
    "TransactionOutcome",
    "OutcomeStatus",
    "BatchOrchestrator",
]
