"""
Stake Operation Builders
========================
Turn StakeAccountInfo snapshots into queueable Operations.

Every builder validates eligibility with the lifecycle classifier first
and raises a ValidationError before any instruction is built. All stake
and withdraw authorities are the vault.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from config.settings import Settings
from vaultbatch.shared.errors import (
    IncompatibleMergeError,
    IneligibleAccountError,
    InvalidAmountError,
)
from vaultbatch.batch.operations import Operation, OperationKind, make_operation
from vaultbatch.ledger import stake_program
from vaultbatch.ledger.memo import add_memo
from vaultbatch.ledger.stake_program import MAX_SEED_LENGTH
from vaultbatch.shared.system.logging import Logger
from vaultbatch.staking.lifecycle import StakeAccountInfo, StakeLifecycleClassifier, StakeState
from vaultbatch.staking.metadata_cache import MetadataCache


def short_address(address) -> str:
    return f"{str(address)[:8]}..."


def format_sol(lamports: int) -> str:
    return f"{lamports / Settings.LAMPORTS_PER_SOL:,.2f} SOL"


def stake_account_label(info: StakeAccountInfo, metadata: Optional[MetadataCache] = None) -> str:
    """Validator name when known, else a shortened validator or account address."""
    if info.delegated_validator is not None:
        name = metadata.validator_name(info.delegated_validator) if metadata else None
        if name:
            return name
        return short_address(info.delegated_validator)
    return short_address(info.address)


def _merge_group_key(info: StakeAccountInfo) -> Tuple[str, str]:
    return (str(info.delegated_validator) if info.delegated_validator else "none", info.state.value)


def count_merge_eligible(accounts: Sequence[StakeAccountInfo]) -> int:
    """Number of merge operations bulk_merge would produce for `accounts`."""
    if len(accounts) < 2:
        return 0
    groups: Dict[Tuple[str, str], int] = {}
    for info in accounts:
        key = _merge_group_key(info)
        groups[key] = groups.get(key, 0) + 1
    return sum(size - 1 for size in groups.values() if size >= 2)


class StakeOperationBuilder:
    """
    Usage:
        builder = StakeOperationBuilder(vault_pda, vault_index=0, metadata=cache)
        queue.add(builder.unstake(account))
    """

    def __init__(
        self,
        vault: Pubkey,
        vault_index: int = 0,
        metadata: Optional[MetadataCache] = None,
        classifier: Optional[StakeLifecycleClassifier] = None,
    ):
        self.vault = vault
        self.vault_index = vault_index
        self.metadata = metadata or MetadataCache()
        self.classifier = classifier or StakeLifecycleClassifier()

    def label(self, info: StakeAccountInfo) -> str:
        return stake_account_label(info, self.metadata)

    def _operation(
        self,
        kind: OperationKind,
        instructions: list,
        label: str,
        description: str,
        target: Optional[Pubkey],
        memo: Optional[str],
    ) -> Operation:
        add_memo(instructions, memo, self.vault)
        return make_operation(
            kind,
            instructions,
            label=label,
            description=description,
            target=target,
            vault_index=self.vault_index,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # SINGLE-ACCOUNT OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def unstake(self, info: StakeAccountInfo, memo: Optional[str] = None) -> Operation:
        if not self.classifier.can_undelegate(info):
            raise IneligibleAccountError(
                f"Cannot unstake {short_address(info.address)} in state {info.state.value}"
            )
        return self._operation(
            OperationKind.UNSTAKE,
            [stake_program.deactivate(info.address, self.vault)],
            label=f"Unstake {self.label(info)}",
            description=f"{format_sol(info.balance)} - {short_address(info.address)}",
            target=info.address,
            memo=memo,
        )

    def withdraw(
        self,
        info: StakeAccountInfo,
        lamports: Optional[int] = None,
        memo: Optional[str] = None,
    ) -> Operation:
        """
        Withdraw to the vault. With no amount, an inactive account is
        drained completely (which closes it).
        """
        if lamports is None:
            if info.state != StakeState.INACTIVE:
                raise IneligibleAccountError(
                    f"Full withdrawal needs an inactive account, "
                    f"{short_address(info.address)} is {info.state.value}"
                )
            lamports = int(info.balance)
        elif not self.classifier.can_withdraw(info, lamports):
            raise InvalidAmountError(
                f"Cannot withdraw {format_sol(lamports)} from {short_address(info.address)} "
                f"(available {format_sol(self.classifier.withdrawable(info))})"
            )
        return self._operation(
            OperationKind.WITHDRAW,
            [stake_program.withdraw(info.address, self.vault, self.vault, lamports)],
            label=f"Withdraw {self.label(info)}",
            description=f"{format_sol(lamports)} - {short_address(info.address)}",
            target=info.address,
            memo=memo,
        )

    def delegate(
        self,
        vote_account: Pubkey,
        lamports: int,
        seed: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> Operation:
        """Create a seed-derived stake account funded by the vault and delegate it."""
        if lamports <= 0:
            raise InvalidAmountError("Delegation amount must be positive")
        seed = (seed or str(int(time.time() * 1000)))[:MAX_SEED_LENGTH]
        instructions, stake_account = stake_program.create_stake_account_with_seed(
            self.vault, seed, lamports
        )
        instructions.append(stake_program.delegate_stake(stake_account, self.vault, vote_account))
        name = self.metadata.validator_name(vote_account) or short_address(vote_account)
        Logger.debug(f"[STAKE] Delegate {format_sol(lamports)} via {stake_account} (seed {seed})")
        return self._operation(
            OperationKind.DELEGATE,
            instructions,
            label=f"Delegate to {name}",
            description=f"{format_sol(lamports)} - {short_address(stake_account)}",
            target=stake_account,
            memo=memo,
        )

    def redelegate(
        self,
        info: StakeAccountInfo,
        vote_account: Pubkey,
        memo: Optional[str] = None,
    ) -> Operation:
        if not self.classifier.can_delegate(info):
            raise IneligibleAccountError(
                f"Only inactive accounts can be re-delegated, "
                f"{short_address(info.address)} is {info.state.value}"
            )
        name = self.metadata.validator_name(vote_account) or short_address(vote_account)
        return self._operation(
            OperationKind.REDELEGATE,
            [stake_program.delegate_stake(info.address, self.vault, vote_account)],
            label=f"Redelegate to {name}",
            description=f"{format_sol(info.balance)} - {short_address(info.address)}",
            target=info.address,
            memo=memo,
        )

    def split(
        self,
        info: StakeAccountInfo,
        lamports: int,
        seed: Optional[str] = None,
        rent_lamports: int = 0,
        memo: Optional[str] = None,
    ) -> Operation:
        if not self.classifier.can_split(info):
            raise IneligibleAccountError(
                f"{short_address(info.address)} is too small to split"
            )
        max_split = info.balance - info.rent_exempt_reserve - self.classifier.min_split_buffer
        if lamports <= 0 or lamports > max_split:
            raise InvalidAmountError(
                f"Split amount must be between 0 and {format_sol(max(int(max_split), 0))}"
            )
        seed = (seed or f"split-{int(time.time() * 1000)}")[:MAX_SEED_LENGTH]
        instructions, split_account = stake_program.split_with_seed(
            info.address, self.vault, lamports, seed, rent_lamports=rent_lamports
        )
        return self._operation(
            OperationKind.SPLIT,
            instructions,
            label=f"Split {self.label(info)}",
            description=f"{format_sol(lamports)} from {short_address(info.address)}",
            target=split_account,
            memo=memo,
        )

    def merge(
        self,
        destination: StakeAccountInfo,
        source: StakeAccountInfo,
        memo: Optional[str] = None,
    ) -> Operation:
        if not self.classifier.can_merge(destination, source):
            raise IncompatibleMergeError(
                f"Cannot merge {short_address(source.address)} into "
                f"{short_address(destination.address)}: state, validator or authority differ"
            )
        return self._operation(
            OperationKind.MERGE,
            [stake_program.merge(destination.address, source.address, self.vault)],
            label=f"Merge into {self.label(destination)}",
            description=f"{format_sol(source.balance)} from {short_address(source.address)}",
            target=destination.address,
            memo=memo,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # BULK
    # ═══════════════════════════════════════════════════════════════════════════

    def bulk_merge(self, accounts: Sequence[StakeAccountInfo]) -> List[Operation]:
        """
        Group by validator and state, then merge every smaller account into
        the largest of its group. Incompatible pairs are skipped.
        """
        groups: "OrderedDict[Tuple[str, str], List[StakeAccountInfo]]" = OrderedDict()
        for info in accounts:
            groups.setdefault(_merge_group_key(info), []).append(info)

        operations: List[Operation] = []
        for group in groups.values():
            if len(group) < 2:
                continue
            ordered = sorted(group, key=lambda a: a.balance, reverse=True)
            destination = ordered[0]
            for source in ordered[1:]:
                if not self.classifier.can_merge(destination, source):
                    continue
                operations.append(self.merge(destination, source))

        Logger.debug(f"[STAKE] Bulk merge: {len(operations)} operation(s) from {len(accounts)} account(s)")
        return operations
