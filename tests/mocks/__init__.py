"""
VaultBatch Test Mocks
=====================
Reusable fakes for isolated testing.
"""

from tests.mocks.mock_rpc import MockLedgerRpc
from tests.mocks.mock_wallet import MockSigner

__all__ = [
    "MockLedgerRpc",
    "MockSigner",
]
