"""
VaultBatch Test Configuration
=============================
Shared fixtures and pytest markers for the test suite.
"""

import pytest
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ============================================================================
# PYTEST MARKERS
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "network: marks tests that require network access"
    )
    config.addinivalue_line(
        "markers", "integration: marks integration tests"
    )


# ============================================================================
# SHARED FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def quiet_console():
    """Keep Rich console output out of test logs."""
    from vaultbatch.shared.system.logging import Logger

    Logger.set_silent(True)
    yield


@pytest.fixture
def multisig_pda():
    from solders.pubkey import Pubkey

    return Pubkey.new_unique()


@pytest.fixture
def vault_pda(multisig_pda):
    from vaultbatch.ledger import multisig

    return multisig.get_vault_pda(multisig_pda, 0)[0]


@pytest.fixture
def signer():
    from tests.mocks.mock_wallet import MockSigner

    return MockSigner()


@pytest.fixture
def rpc(multisig_pda, signer):
    """Fake ledger holding a multisig whose counter is at 7."""
    from tests.mocks.mock_rpc import MockLedgerRpc
    from tests.mocks.ledger_accounts import multisig_account_data

    ledger = MockLedgerRpc()
    ledger.set_account(
        multisig_pda,
        multisig_account_data(transaction_index=7, members=[signer.pubkey()]),
    )
    return ledger


@pytest.fixture
def make_stake_info():
    """Factory for StakeAccountInfo snapshots (amounts in lamports)."""
    from solders.pubkey import Pubkey
    from vaultbatch.staking.lifecycle import StakeAccountInfo, StakeState

    def factory(
        state=StakeState.ACTIVE,
        balance=10_000_000_000,
        delegated_amount=None,
        rent_exempt_reserve=2_282_880,
        validator="new",
        authority=None,
        address=None,
    ):
        if delegated_amount is None:
            delegated_amount = 0 if state == StakeState.INACTIVE else balance - rent_exempt_reserve
        if validator == "new":
            validator = None if state == StakeState.INACTIVE else Pubkey.new_unique()
        authority = authority or Pubkey.new_unique()
        return StakeAccountInfo(
            address=address or Pubkey.new_unique(),
            balance=balance,
            delegated_amount=delegated_amount,
            state=state,
            rent_exempt_reserve=rent_exempt_reserve,
            delegated_validator=validator,
            staker=authority,
            withdrawer=authority,
        )

    return factory
