"""
Mock Signer
===========
Fake wallet signer: signs with a throwaway keypair, or rejects on demand.
"""

from typing import List, Optional, Sequence

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from vaultbatch.shared.errors import UserRejectedError


class MockSigner:
    """
    Usage:
        signer = MockSigner()
        signer.reject = True   # next request is declined by the "user"
    """

    def __init__(self, keypair: Optional[Keypair] = None):
        self.keypair = keypair or Keypair()
        self.reject = False
        self.requests: List[int] = []

    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    async def sign_transaction(self, message: MessageV0) -> VersionedTransaction:
        return (await self.sign_all_transactions([message]))[0]

    async def sign_all_transactions(self, messages: Sequence[MessageV0]) -> List[VersionedTransaction]:
        self.requests.append(len(messages))
        if self.reject:
            raise UserRejectedError("User rejected the request")
        return [VersionedTransaction(message, [self.keypair]) for message in messages]
