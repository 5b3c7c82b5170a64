"""Stake account discovery for a vault."""

from __future__ import annotations

from typing import List, Optional

from solders.pubkey import Pubkey

from vaultbatch.infrastructure.rpc_client import LedgerRpc
from vaultbatch.ledger.borsh import LayoutError
from vaultbatch.ledger.stake_program import (
    STAKE_ACCOUNT_SPACE,
    STAKE_PROGRAM_ID,
    STAKER_AUTHORITY_OFFSET,
    StakeStateKind,
    decode_stake_account,
)
from vaultbatch.shared.system.logging import Logger
from vaultbatch.staking.lifecycle import StakeAccountInfo, StakeLifecycleClassifier


class StakeAccountReader:
    """
    Usage:
        reader = StakeAccountReader(rpc)
        accounts = await reader.fetch_for_vault(vault_pda)
    """

    def __init__(self, rpc: LedgerRpc, classifier: Optional[StakeLifecycleClassifier] = None):
        self.rpc = rpc
        self.classifier = classifier or StakeLifecycleClassifier()

    async def fetch_for_vault(self, vault: Pubkey) -> List[StakeAccountInfo]:
        """Every initialized or delegated stake account whose staker is `vault`."""
        keyed = await self.rpc.get_program_accounts(
            STAKE_PROGRAM_ID,
            memcmp=[(STAKER_AUTHORITY_OFFSET, vault)],
            data_size=STAKE_ACCOUNT_SPACE,
        )
        if not keyed:
            return []

        epoch = await self.rpc.get_epoch()
        accounts: List[StakeAccountInfo] = []
        for item in keyed:
            try:
                data = decode_stake_account(item.data)
            except (LayoutError, ValueError) as e:
                Logger.debug(f"[STAKE] Skipping undecodable account {item.pubkey}: {e}")
                continue
            if data.kind not in (StakeStateKind.INITIALIZED, StakeStateKind.STAKE):
                continue
            accounts.append(self.classifier.from_account(item.pubkey, item.lamports, data, epoch))

        Logger.debug(f"[STAKE] {len(accounts)} stake account(s) for vault {str(vault)[:8]}...")
        return accounts
