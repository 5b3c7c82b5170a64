"""
Batch Engine Errors
===================
Exception taxonomy for the batch pipeline plus best-effort decoding of
on-chain failures into readable reasons.

Families:
- ValidationError: caught before any network round-trip
- SignerError:     wallet/keypair interaction (user rejection is silent)
- NetworkError:    RPC failures, confirmation timeouts
- ProtocolError:   on-chain rejections (decoded when possible)
"""

import json
import re
from enum import Enum
from typing import Any, Iterable, Optional

from config.settings import Settings


class ErrorCode(Enum):
    """Standardized error codes for batch failures."""

    # Validation
    QUEUE_FULL = "QUEUE_FULL"
    OPERATION_TOO_LARGE = "OPERATION_TOO_LARGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INCOMPATIBLE_MERGE = "INCOMPATIBLE_MERGE"
    INELIGIBLE_ACCOUNT = "INELIGIBLE_ACCOUNT"
    VAULT_MISMATCH = "VAULT_MISMATCH"
    DUPLICATE_ITEM = "DUPLICATE_ITEM"

    # Signer
    USER_REJECTED = "USER_REJECTED"
    SIGNER_UNAVAILABLE = "SIGNER_UNAVAILABLE"

    # Network
    RPC_ERROR = "RPC_ERROR"
    TIMEOUT = "TIMEOUT"

    # Protocol
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    TRANSACTION_TOO_LARGE = "TRANSACTION_TOO_LARGE"
    STALE_TRANSACTION_INDEX = "STALE_TRANSACTION_INDEX"
    NOT_SUPPORTED_FOR_CONTROLLED = "NOT_SUPPORTED_FOR_CONTROLLED"

    # Fatal
    NO_MULTISIG = "NO_MULTISIG"
    NOTHING_TO_EXECUTE = "NOTHING_TO_EXECUTE"

    UNKNOWN = "UNKNOWN"


class BatchError(Exception):
    """Base exception for batch operations."""

    code = ErrorCode.UNKNOWN

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

class ValidationError(BatchError):
    """Input rejected before any network call."""


class BatchFullError(ValidationError):
    code = ErrorCode.QUEUE_FULL


class OperationTooLargeError(ValidationError):
    """A single operation cannot fit even into an empty batch."""

    code = ErrorCode.OPERATION_TOO_LARGE


class InvalidAmountError(ValidationError):
    code = ErrorCode.INVALID_AMOUNT


class IncompatibleMergeError(ValidationError):
    code = ErrorCode.INCOMPATIBLE_MERGE


class IneligibleAccountError(ValidationError):
    code = ErrorCode.INELIGIBLE_ACCOUNT


class VaultMismatchError(ValidationError):
    code = ErrorCode.VAULT_MISMATCH


class DuplicateItemError(ValidationError):
    code = ErrorCode.DUPLICATE_ITEM


# ═══════════════════════════════════════════════════════════════════════════════
# SIGNER
# ═══════════════════════════════════════════════════════════════════════════════

class SignerError(BatchError):
    """Signer interaction failed."""


class UserRejectedError(SignerError):
    """The human declined to sign. Never reported as a failure."""

    code = ErrorCode.USER_REJECTED


class SignerUnavailableError(SignerError):
    code = ErrorCode.SIGNER_UNAVAILABLE


# ═══════════════════════════════════════════════════════════════════════════════
# NETWORK
# ═══════════════════════════════════════════════════════════════════════════════

class NetworkError(BatchError):
    """RPC or transport failure."""


class RpcError(NetworkError):
    code = ErrorCode.RPC_ERROR


class ConfirmationTimeoutError(NetworkError):
    """No finality within the wait budget. The transaction may still land."""

    code = ErrorCode.TIMEOUT


# ═══════════════════════════════════════════════════════════════════════════════
# PROTOCOL
# ═══════════════════════════════════════════════════════════════════════════════

class ProtocolError(BatchError):
    """The ledger rejected the transaction."""

    code = ErrorCode.TRANSACTION_FAILED


class TransactionFailedError(ProtocolError):
    code = ErrorCode.TRANSACTION_FAILED


class TransactionTooLargeError(ProtocolError):
    code = ErrorCode.TRANSACTION_TOO_LARGE


class StaleTransactionIndexError(ProtocolError):
    """Another proposer consumed the index; re-read and retry."""

    code = ErrorCode.STALE_TRANSACTION_INDEX


class NotSupportedForControlledError(ProtocolError):
    code = ErrorCode.NOT_SUPPORTED_FOR_CONTROLLED


# ═══════════════════════════════════════════════════════════════════════════════
# FATAL
# ═══════════════════════════════════════════════════════════════════════════════

class NoMultisigSelectedError(BatchError):
    code = ErrorCode.NO_MULTISIG


class NothingToExecuteError(BatchError):
    code = ErrorCode.NOTHING_TO_EXECUTE


# ═══════════════════════════════════════════════════════════════════════════════
# DECODING
# ═══════════════════════════════════════════════════════════════════════════════

# Custom error numbers of the multisig program
MULTISIG_ERRORS = {
    6000: ("DuplicateMember", "Found multiple members with the same pubkey"),
    6001: ("EmptyMembers", "Members array is empty"),
    6002: ("TooManyMembers", "Too many members, can be up to 65535"),
    6003: ("InvalidThreshold", "Invalid threshold, must be between 1 and number of members"),
    6004: ("Unauthorized", "Attempted to perform an unauthorized action"),
    6005: ("NotAMember", "Provided pubkey is not a member of multisig"),
    6006: ("InvalidTransactionMessage", "TransactionMessage is malformed"),
    6007: ("StaleProposal", "Proposal is stale"),
    6008: ("InvalidProposalStatus", "Invalid proposal status"),
    6009: ("InvalidTransactionIndex", "Invalid transaction index"),
    6010: ("AlreadyApproved", "Member already approved the transaction"),
    6011: ("AlreadyRejected", "Member already rejected the transaction"),
    6012: ("AlreadyCancelled", "Member already cancelled the transaction"),
    6013: ("InvalidNumberOfAccounts", "Wrong number of accounts provided"),
    6014: ("InvalidAccount", "Invalid account provided"),
    6015: ("RemoveLastMember", "Cannot remove last member"),
    6016: ("NoVoters", "Members don't include any voters"),
    6017: ("NoProposers", "Members don't include any proposers"),
    6018: ("NoExecutors", "Members don't include any executors"),
    6019: ("InvalidStaleTransactionIndex", "`stale_transaction_index` must be <= `transaction_index`"),
    6020: ("NotSupportedForControlled", "Instruction not supported for controlled multisig"),
    6021: ("TimeLockNotReleased", "Proposal time lock has not been released"),
}

# Friendly text for common ledger-level error names
LEDGER_ERROR_MESSAGES = {
    "ProgramAccountNotFound": (
        "The required account was not found. Please ensure all accounts exist "
        "and are properly initialized."
    ),
    "InsufficientFunds": "Insufficient funds for the transaction.",
    "InsufficientFundsForFee": "Insufficient funds for transaction fees.",
    "AccountNotFound": "One of the required accounts does not exist.",
    "BlockhashNotFound": "Transaction expired. Please try again.",
}

_ANCHOR_LOG = re.compile(
    r"Error Code: (\w+)\. Error Number: (\d+)\. Error Message: (.+?)(?:\.|$)"
)
_STALE_INDEX_MARKERS = ("ConstraintSeeds", "already in use", "InvalidTransactionIndex")

USER_REJECTION_MARKERS = ("User rejected", "user rejected", "Transaction cancelled")


def truncate_message(message: str, limit: Optional[int] = None) -> str:
    limit = limit or Settings.ERROR_MESSAGE_MAX_CHARS
    return message if len(message) <= limit else message[:limit] + "..."


def is_user_rejection(error: BaseException) -> bool:
    if isinstance(error, UserRejectedError):
        return True
    text = str(error)
    return any(marker in text for marker in USER_REJECTION_MARKERS)


def _custom_code(err: Any) -> Optional[int]:
    """Pull the Custom(n) code out of an InstructionError payload."""
    if isinstance(err, dict):
        if "Custom" in err and isinstance(err["Custom"], int):
            return err["Custom"]
        for value in err.values():
            code = _custom_code(value)
            if code is not None:
                return code
    elif isinstance(err, (list, tuple)):
        for value in err:
            code = _custom_code(value)
            if code is not None:
                return code
    else:
        # Matches Custom(6005), InstructionErrorCustom(6005) and "Custom": 6005
        match = re.search(r"Custom\"?\s*[:(]\s*(\d+)", str(err))
        if match:
            return int(match.group(1))
    return None


def decode_program_error(err: Any = None, logs: Iterable[str] = ()) -> str:
    """
    Best-effort human reason for an on-chain failure.

    Order: Anchor log line, known multisig custom code, known ledger error
    name, raw error text.
    """
    for line in logs or ():
        match = _ANCHOR_LOG.search(line)
        if match:
            return f"{match.group(3)} (Code: {match.group(1)})"

    code = _custom_code(err)
    if code is not None and code in MULTISIG_ERRORS:
        name, text = MULTISIG_ERRORS[code]
        return f"{text} (Code: {name})"

    raw = err if isinstance(err, str) else json.dumps(err, default=str) if err is not None else ""
    # Longest name first: InsufficientFundsForFee before InsufficientFunds
    for name in sorted(LEDGER_ERROR_MESSAGES, key=len, reverse=True):
        if name in raw:
            return LEDGER_ERROR_MESSAGES[name]

    for line in logs or ():
        if "NotAuthorized" in line or "Not authorized" in line:
            return (
                "Not authorized to perform this action. You may not be a member "
                "of this multisig or lack the required permissions."
            )

    if code is not None:
        return f"Custom program error {code}"
    return raw or "Unknown program error"


def classify_program_failure(
    err: Any = None,
    logs: Iterable[str] = (),
    signature: Optional[str] = None,
    stale_index_possible: bool = False,
) -> ProtocolError:
    """
    Map an on-chain failure onto the ProtocolError family.

    Seed and "already in use" failures read as an index collision only when
    the transaction created a vault transaction (`stale_index_possible`);
    elsewhere they come from seed-derived stake accounts or proposals and
    are plain TransactionFailedError.
    """
    logs = list(logs or ())
    reason = decode_program_error(err, logs)
    haystack = " ".join(logs) + " " + (str(err) if err is not None else "") + " " + reason
    details = {"err": err, "signature": signature}

    if "NotSupportedForControlled" in haystack or _custom_code(err) == 6020:
        return NotSupportedForControlledError(reason, details)
    if stale_index_possible and (
        any(marker in haystack for marker in _STALE_INDEX_MARKERS) or _custom_code(err) == 6009
    ):
        return StaleTransactionIndexError(
            f"Transaction index already used by another proposal: {reason}", details
        )
    return TransactionFailedError(reason, details)


def format_error(error: Any) -> str:
    """Render any error-like value into a human-readable message."""
    if error is None:
        return "An unknown error occurred"

    if isinstance(error, str):
        return error

    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__

    if isinstance(error, (list, tuple)):
        for item in error:
            err = None
            if isinstance(item, dict):
                err = item.get("err") or (item.get("status") or {}).get("Err")
            else:
                err = getattr(item, "err", None)
            if err:
                if isinstance(err, str):
                    return LEDGER_ERROR_MESSAGES.get(err, err)
                return json.dumps(err, default=str)
        return json.dumps(list(error), default=str)

    if isinstance(error, dict) and "message" in error:
        return str(error["message"])

    text = str(error)
    if text and not text.startswith("<"):
        return text

    return "An unexpected error occurred"
