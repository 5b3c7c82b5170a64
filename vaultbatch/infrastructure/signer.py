"""
Transaction Signer
==================
Signer capability consumed by the batch engine.

The engine compiles MessageV0 objects and hands them to a signer; the
signer returns fully signed VersionedTransactions. A signer may refuse
(UserRejectedError), which the orchestrator treats as a silent cancel.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from config.settings import Settings
from vaultbatch.shared.errors import SignerUnavailableError, UserRejectedError
from vaultbatch.shared.system.logging import Logger


class Signer(Protocol):
    def pubkey(self) -> Pubkey:
        ...

    async def sign_transaction(self, message: MessageV0) -> VersionedTransaction:
        ...

    async def sign_all_transactions(self, messages: Sequence[MessageV0]) -> List[VersionedTransaction]:
        ...


# (number of transactions) -> approved?
ApprovalPrompt = Callable[[int], bool]


class KeypairSigner:
    """
    Local keypair signer.

    Usage:
        signer = KeypairSigner(load_keypair(), prompt=lambda n: typer.confirm(f"Sign {n}?"))
        tx = await signer.sign_transaction(message)
    """

    def __init__(self, keypair: Keypair, prompt: Optional[ApprovalPrompt] = None):
        self.keypair = keypair
        self.prompt = prompt
        self._signed = 0

    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def _confirm(self, count: int) -> None:
        if self.prompt is not None and not self.prompt(count):
            Logger.info(f"[SIGNER] User rejected signing {count} transaction(s)")
            raise UserRejectedError("User rejected the request")

    async def sign_transaction(self, message: MessageV0) -> VersionedTransaction:
        self._confirm(1)
        self._signed += 1
        return VersionedTransaction(message, [self.keypair])

    async def sign_all_transactions(self, messages: Sequence[MessageV0]) -> List[VersionedTransaction]:
        """All or nothing: one approval covers every message."""
        self._confirm(len(messages))
        signed = [VersionedTransaction(message, [self.keypair]) for message in messages]
        self._signed += len(signed)
        return signed


def load_keypair(path: Optional[str] = None) -> Keypair:
    """
    Load the signing keypair.

    Order: explicit path, SOLANA_PRIVATE_KEY (base58), KEYPAIR_PATH
    (solana CLI JSON array).

    Raises:
        SignerUnavailableError: no usable key found
    """
    private_key = os.getenv("SOLANA_PRIVATE_KEY")
    if not path and private_key:
        try:
            return Keypair.from_base58_string(private_key)
        except ValueError as e:
            raise SignerUnavailableError(f"Invalid Key Format: {e}") from e

    keypair_path = path or Settings.KEYPAIR_PATH
    if not keypair_path:
        raise SignerUnavailableError("No signer available: set KEYPAIR_PATH or SOLANA_PRIVATE_KEY")

    file = Path(keypair_path).expanduser()
    if not file.exists():
        raise SignerUnavailableError(f"Keypair file not found: {file}")
    try:
        secret = json.loads(file.read_text())
        return Keypair.from_bytes(bytes(secret))
    except (ValueError, TypeError) as e:
        raise SignerUnavailableError(f"Invalid keypair file {file}: {e}") from e
