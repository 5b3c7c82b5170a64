"""
Batch Results
=============
Standardized return types for the three batch paths.

- TransactionOutcome: one submitted (or attempted) transaction
- BatchResult: aggregate for submit_batch_proposal / approvals / executes

Usage:
    result = await orchestrator.submit_batch_executes(queue)
    if result.failed:
        for outcome in result.failures:
            log(outcome.error_message)
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from vaultbatch.shared.errors import ErrorCode


class OutcomeStatus(Enum):
    """Status codes for a single transaction."""

    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"  # Failed or unconfirmed; may still land
    NOT_SENT = "NOT_SENT"


@dataclass
class TransactionOutcome:
    """Result of submitting one transaction."""

    success: bool
    status: OutcomeStatus = OutcomeStatus.FAILED
    transaction_index: Optional[int] = None
    signature: Optional[str] = None

    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    timestamp: float = field(default_factory=time.time)
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "transaction_index": self.transaction_index,
            "signature": self.signature,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
            "latency_ms": self.latency_ms,
        }

    def __repr__(self) -> str:
        if self.success:
            sig = self.signature[:12] if self.signature else "N/A"
            return f"TransactionOutcome(CONFIRMED: #{self.transaction_index}, tx={sig}...)"
        return f"TransactionOutcome({self.status.value}: #{self.transaction_index}, {self.error_message})"


@dataclass
class BatchResult:
    """Aggregate result for one top-level batch call."""

    outcomes: List[TransactionOutcome] = field(default_factory=list)

    # Set by submit_batch_proposal
    transaction_index: Optional[int] = None

    # User declined to sign; nothing was sent and nothing is reported
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def success(self) -> bool:
        return not self.cancelled and bool(self.outcomes) and self.failed == 0

    @property
    def signatures(self) -> List[str]:
        return [o.signature for o in self.outcomes if o.signature]

    @property
    def failures(self) -> List[TransactionOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "transaction_index": self.transaction_index,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def confirmed_outcome(
    signature: str,
    transaction_index: Optional[int] = None,
    **kwargs
) -> TransactionOutcome:
    """Create a confirmed outcome."""
    return TransactionOutcome(
        success=True,
        status=OutcomeStatus.CONFIRMED,
        transaction_index=transaction_index,
        signature=signature,
        latency_ms=kwargs.get("latency_ms", 0.0),
    )


def failed_outcome(
    error_code: ErrorCode,
    error_message: str,
    transaction_index: Optional[int] = None,
    signature: Optional[str] = None,
    **kwargs
) -> TransactionOutcome:
    """Create a failed outcome."""
    status = kwargs.get("status")
    if status is None:
        status = OutcomeStatus.TIMEOUT if error_code == ErrorCode.TIMEOUT else OutcomeStatus.FAILED
    return TransactionOutcome(
        success=False,
        status=status,
        transaction_index=transaction_index,
        signature=signature,
        error_code=error_code,
        error_message=error_message,
        latency_ms=kwargs.get("latency_ms", 0.0),
    )


def cancelled_result() -> BatchResult:
    return BatchResult(cancelled=True)
