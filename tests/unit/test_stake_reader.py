"""
Stake Account Reader Unit Tests
===============================

Run with: python -m pytest tests/unit/test_stake_reader.py -v
"""

import pytest
from solders.pubkey import Pubkey

from vaultbatch.infrastructure.rpc_client import KeyedAccount
from vaultbatch.ledger.stake_program import STAKE_PROGRAM_ID
from vaultbatch.staking.lifecycle import StakeState


class TestFetchForVault:

    @pytest.mark.asyncio
    async def test_filters_on_staker_and_classifies(self, rpc, vault_pda):
        from tests.mocks.ledger_accounts import stake_account_data
        from vaultbatch.infrastructure.stake_reader import StakeAccountReader

        rpc.epoch = 600
        active = Pubkey.new_unique()
        fresh = Pubkey.new_unique()
        rpc.program_accounts = [
            KeyedAccount(active, 5_002_282_880, stake_account_data(
                vault_pda, voter=Pubkey.new_unique(), stake=5_000_000_000, activation_epoch=550
            )),
            KeyedAccount(fresh, 1_000_000_000, stake_account_data(vault_pda)),
            KeyedAccount(Pubkey.new_unique(), 10, b"\x09\x00\x00\x00"),
        ]

        accounts = await StakeAccountReader(rpc).fetch_for_vault(vault_pda)

        assert {a.address: a.state for a in accounts} == {
            active: StakeState.ACTIVE,
            fresh: StakeState.INACTIVE,
        }
        program_id, memcmp, data_size = rpc.last_program_query
        assert program_id == STAKE_PROGRAM_ID
        assert memcmp == [(12, vault_pda)]
        assert data_size == 200

    @pytest.mark.asyncio
    async def test_no_accounts(self, rpc, vault_pda):
        from vaultbatch.infrastructure.stake_reader import StakeAccountReader

        assert await StakeAccountReader(rpc).fetch_for_vault(vault_pda) == []
