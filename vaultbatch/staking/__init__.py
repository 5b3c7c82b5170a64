"""Stake account lifecycle and stake operation builders."""

from vaultbatch.staking.lifecycle import StakeAccountInfo, StakeLifecycleClassifier, StakeState
from vaultbatch.staking.metadata_cache import MetadataCache
from vaultbatch.staking.stake_actions import (
    StakeOperationBuilder,
    count_merge_eligible,
    stake_account_label,
)

__all__ = [
    "StakeAccountInfo",
    "StakeLifecycleClassifier",
    "StakeState",
    "MetadataCache",
    "StakeOperationBuilder",
    "count_merge_eligible",
    "stake_account_label",
]
