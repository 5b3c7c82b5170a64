"""
Stake Lifecycle Classifier
==========================
Derives a discrete lifecycle state and operation eligibility for a stake
account. Pure: no RPC, no mutation, recomputed on every poll.

States:
    activating   -> delegated, warming up
    active       -> fully delegated, no deactivation pending
    deactivating -> deactivation requested, cooling down
    inactive     -> never delegated, or fully cooled down

Amounts are integer lamports in production; the predicates only compare,
so any consistent numeric unit works.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from solders.pubkey import Pubkey

from config.settings import Settings
from vaultbatch.ledger.stake_program import EPOCH_MAX, StakeAccountData, StakeStateKind

Amount = Union[int, float]


class StakeState(Enum):
    ACTIVATING = "activating"
    ACTIVE = "active"
    DEACTIVATING = "deactivating"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class StakeAccountInfo:
    """Snapshot of one stake account. A fresh record is built on each poll."""

    address: Pubkey
    balance: Amount
    delegated_amount: Amount
    state: StakeState
    rent_exempt_reserve: Amount
    delegated_validator: Optional[Pubkey] = None
    active_stake: Optional[Amount] = None
    inactive_stake: Optional[Amount] = None
    staker: Optional[Pubkey] = None
    withdrawer: Optional[Pubkey] = None
    activation_epoch: Optional[int] = None
    deactivation_epoch: Optional[int] = None

    @property
    def is_delegated(self) -> bool:
        return self.delegated_validator is not None


class StakeLifecycleClassifier:
    """
    Usage:
        classifier = StakeLifecycleClassifier()
        info = classifier.from_account(address, lamports, decoded, current_epoch)
        if classifier.can_undelegate(info):
            ...
    """

    def __init__(self, min_split_buffer: Optional[Amount] = None):
        if min_split_buffer is None:
            min_split_buffer = int(Settings.MIN_SPLIT_BUFFER_SOL * Settings.LAMPORTS_PER_SOL)
        self.min_split_buffer = min_split_buffer

    # ═══════════════════════════════════════════════════════════════════════════
    # CLASSIFICATION
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def classify(
        balance: Amount,
        delegated_amount: Amount,
        active_stake: Optional[Amount],
        inactive_stake: Optional[Amount],
        deactivation_set: bool,
    ) -> StakeState:
        if deactivation_set:
            # Unknown inactive stake may still be cooling down
            if inactive_stake is None or inactive_stake < balance:
                return StakeState.DEACTIVATING
            return StakeState.INACTIVE

        if not delegated_amount:
            return StakeState.INACTIVE
        if active_stake is not None and active_stake < delegated_amount:
            return StakeState.ACTIVATING
        return StakeState.ACTIVE

    def from_account(
        self,
        address: Pubkey,
        lamports: int,
        data: StakeAccountData,
        current_epoch: int,
    ) -> StakeAccountInfo:
        """
        Build a StakeAccountInfo from decoded account data.

        Activation is derived from delegation epochs: stake is counted
        active from the epoch after activation and inactive from the epoch
        after deactivation.
        """
        delegation = data.delegation if data.kind == StakeStateKind.STAKE else None
        if delegation is None:
            return StakeAccountInfo(
                address=address,
                balance=lamports,
                delegated_amount=0,
                state=StakeState.INACTIVE,
                rent_exempt_reserve=data.rent_exempt_reserve,
                active_stake=0,
                inactive_stake=lamports,
                staker=data.staker,
                withdrawer=data.withdrawer,
            )

        deactivation_set = delegation.deactivation_epoch != EPOCH_MAX
        if deactivation_set:
            if current_epoch > delegation.deactivation_epoch:
                active = 0
            else:
                active = delegation.stake
        elif delegation.activation_epoch == EPOCH_MAX or current_epoch > delegation.activation_epoch:
            # EPOCH_MAX activation is a bootstrap (genesis) stake
            active = delegation.stake
        else:
            active = 0
        inactive = lamports - active

        state = self.classify(
            balance=lamports,
            delegated_amount=delegation.stake,
            active_stake=active,
            inactive_stake=inactive,
            deactivation_set=deactivation_set,
        )
        return StakeAccountInfo(
            address=address,
            balance=lamports,
            delegated_amount=delegation.stake,
            state=state,
            rent_exempt_reserve=data.rent_exempt_reserve,
            delegated_validator=delegation.voter,
            active_stake=active,
            inactive_stake=inactive,
            staker=data.staker,
            withdrawer=data.withdrawer,
            activation_epoch=delegation.activation_epoch,
            deactivation_epoch=delegation.deactivation_epoch if deactivation_set else None,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # ELIGIBILITY
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def can_undelegate(info: StakeAccountInfo) -> bool:
        return info.state in (StakeState.ACTIVE, StakeState.ACTIVATING)

    @staticmethod
    def withdrawable(info: StakeAccountInfo) -> Amount:
        """Largest amount can_withdraw would accept (0 when none)."""
        if info.state == StakeState.INACTIVE:
            return max(info.balance - info.rent_exempt_reserve, 0)
        if info.state in (StakeState.ACTIVE, StakeState.ACTIVATING):
            return max(info.balance - info.delegated_amount - info.rent_exempt_reserve, 0)
        return 0

    @classmethod
    def can_withdraw(cls, info: StakeAccountInfo, amount: Amount) -> bool:
        if amount <= 0:
            return False
        if info.state == StakeState.DEACTIVATING:
            return False
        return amount <= cls.withdrawable(info)

    def can_split(self, info: StakeAccountInfo) -> bool:
        return info.balance > info.rent_exempt_reserve + self.min_split_buffer

    @staticmethod
    def can_merge(a: StakeAccountInfo, b: StakeAccountInfo) -> bool:
        if a.address == b.address:
            return False
        return (
            a.state == b.state
            and a.delegated_validator == b.delegated_validator
            and a.staker == b.staker
            and a.withdrawer == b.withdrawer
        )

    @staticmethod
    def can_delegate(info: StakeAccountInfo) -> bool:
        return info.state == StakeState.INACTIVE
