"""
Native Stake Program Codec
==========================
Instruction builders and account decoding for the Stake program.

All authorities are the multisig vault: the vault signs inside the vault
transaction, so no extra signatures are needed at proposal time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import (
    AllocateWithSeedParams,
    CreateAccountWithSeedParams,
    TransferParams,
    allocate_with_seed,
    create_account_with_seed,
    transfer,
)

from vaultbatch.ledger.borsh import BorshReader, BorshWriter, LayoutError


STAKE_PROGRAM_ID = Pubkey.from_string("Stake11111111111111111111111111111111111111")
STAKE_CONFIG_ID = Pubkey.from_string("StakeConfig11111111111111111111111111111111")
SYSVAR_CLOCK = Pubkey.from_string("SysvarC1ock11111111111111111111111111111111")
SYSVAR_RENT = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_STAKE_HISTORY = Pubkey.from_string("SysvarStakeHistory1111111111111111111111111")

STAKE_ACCOUNT_SPACE = 200
MAX_SEED_LENGTH = 32

# u64::MAX marks "not deactivating" (and bootstrap activation)
EPOCH_MAX = 2**64 - 1

# Staker authority lives right after the state tag and rent reserve
STAKER_AUTHORITY_OFFSET = 12


class StakeInstruction(IntEnum):
    INITIALIZE = 0
    AUTHORIZE = 1
    DELEGATE_STAKE = 2
    SPLIT = 3
    WITHDRAW = 4
    DEACTIVATE = 5
    SET_LOCKUP = 6
    MERGE = 7


class StakeStateKind(IntEnum):
    UNINITIALIZED = 0
    INITIALIZED = 1
    STAKE = 2
    REWARDS_POOL = 3


# ═══════════════════════════════════════════════════════════════════════════════
# ACCOUNT LAYOUT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StakeDelegation:
    voter: Pubkey
    stake: int
    activation_epoch: int
    deactivation_epoch: int

    @property
    def is_deactivating(self) -> bool:
        return self.deactivation_epoch != EPOCH_MAX


@dataclass(frozen=True)
class StakeAccountData:
    """Decoded StakeStateV2 (meta + optional delegation)."""

    kind: StakeStateKind
    rent_exempt_reserve: int
    staker: Optional[Pubkey]
    withdrawer: Optional[Pubkey]
    delegation: Optional[StakeDelegation] = None


def decode_stake_account(data: bytes) -> StakeAccountData:
    r = BorshReader(data)
    kind = StakeStateKind(r.u32())
    if kind in (StakeStateKind.UNINITIALIZED, StakeStateKind.REWARDS_POOL):
        return StakeAccountData(kind=kind, rent_exempt_reserve=0, staker=None, withdrawer=None)

    rent_exempt_reserve = r.u64()
    staker = r.pubkey()
    withdrawer = r.pubkey()
    r.i64()  # lockup.unix_timestamp
    r.u64()  # lockup.epoch
    r.pubkey()  # lockup.custodian

    delegation = None
    if kind == StakeStateKind.STAKE:
        voter = r.pubkey()
        stake = r.u64()
        activation_epoch = r.u64()
        deactivation_epoch = r.u64()
        delegation = StakeDelegation(
            voter=voter,
            stake=stake,
            activation_epoch=activation_epoch,
            deactivation_epoch=deactivation_epoch,
        )

    return StakeAccountData(
        kind=kind,
        rent_exempt_reserve=rent_exempt_reserve,
        staker=staker,
        withdrawer=withdrawer,
        delegation=delegation,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# INSTRUCTION BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

def _data(kind: StakeInstruction) -> BorshWriter:
    return BorshWriter().u32(int(kind))


def initialize(
    stake_account: Pubkey,
    staker: Pubkey,
    withdrawer: Pubkey,
    custodian: Optional[Pubkey] = None,
) -> Instruction:
    data = (
        _data(StakeInstruction.INITIALIZE)
        .pubkey(staker)
        .pubkey(withdrawer)
        .i64(0)
        .u64(0)
        .pubkey(custodian or withdrawer)
        .to_bytes()
    )
    return Instruction(
        STAKE_PROGRAM_ID,
        data,
        [
            AccountMeta(stake_account, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_RENT, is_signer=False, is_writable=False),
        ],
    )


def delegate_stake(
    stake_account: Pubkey,
    authority: Pubkey,
    vote_account: Pubkey,
) -> Instruction:
    return Instruction(
        STAKE_PROGRAM_ID,
        _data(StakeInstruction.DELEGATE_STAKE).to_bytes(),
        [
            AccountMeta(stake_account, is_signer=False, is_writable=True),
            AccountMeta(vote_account, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_CLOCK, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_STAKE_HISTORY, is_signer=False, is_writable=False),
            AccountMeta(STAKE_CONFIG_ID, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def deactivate(stake_account: Pubkey, authority: Pubkey) -> Instruction:
    return Instruction(
        STAKE_PROGRAM_ID,
        _data(StakeInstruction.DEACTIVATE).to_bytes(),
        [
            AccountMeta(stake_account, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_CLOCK, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def withdraw(
    stake_account: Pubkey,
    authority: Pubkey,
    to_pubkey: Pubkey,
    lamports: int,
) -> Instruction:
    return Instruction(
        STAKE_PROGRAM_ID,
        _data(StakeInstruction.WITHDRAW).u64(lamports).to_bytes(),
        [
            AccountMeta(stake_account, is_signer=False, is_writable=True),
            AccountMeta(to_pubkey, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_CLOCK, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_STAKE_HISTORY, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def split(
    stake_account: Pubkey,
    authority: Pubkey,
    split_stake_account: Pubkey,
    lamports: int,
) -> Instruction:
    return Instruction(
        STAKE_PROGRAM_ID,
        _data(StakeInstruction.SPLIT).u64(lamports).to_bytes(),
        [
            AccountMeta(stake_account, is_signer=False, is_writable=True),
            AccountMeta(split_stake_account, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def merge(
    destination: Pubkey,
    source: Pubkey,
    authority: Pubkey,
) -> Instruction:
    return Instruction(
        STAKE_PROGRAM_ID,
        _data(StakeInstruction.MERGE).to_bytes(),
        [
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_CLOCK, is_signer=False, is_writable=False),
            AccountMeta(SYSVAR_STAKE_HISTORY, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SEED-DERIVED ACCOUNTS
# ═══════════════════════════════════════════════════════════════════════════════

def derive_seed_account(base: Pubkey, seed: str) -> Pubkey:
    if len(seed) > MAX_SEED_LENGTH:
        raise LayoutError(f"Seed longer than {MAX_SEED_LENGTH} characters: {seed!r}")
    return Pubkey.create_with_seed(base, seed, STAKE_PROGRAM_ID)


def create_stake_account_with_seed(
    vault: Pubkey,
    seed: str,
    lamports: int,
) -> tuple:
    """
    Create and initialize a stake account owned by the vault.

    Seed derivation means the vault is the only signer required.

    Returns:
        (instructions, stake_account)
    """
    stake_account = derive_seed_account(vault, seed)
    instructions: List[Instruction] = [
        create_account_with_seed(
            CreateAccountWithSeedParams(
                from_pubkey=vault,
                to_pubkey=stake_account,
                base=vault,
                seed=seed,
                lamports=lamports,
                space=STAKE_ACCOUNT_SPACE,
                owner=STAKE_PROGRAM_ID,
            )
        ),
        initialize(stake_account, staker=vault, withdrawer=vault),
    ]
    return instructions, stake_account


def split_with_seed(
    stake_account: Pubkey,
    vault: Pubkey,
    lamports: int,
    seed: str,
    rent_lamports: int = 0,
) -> tuple:
    """
    Split `lamports` into a fresh seed-derived stake account.

    `rent_lamports` pre-funds the destination when the cluster requires a
    rent-exempt split destination.

    Returns:
        (instructions, split_stake_account)
    """
    split_account = derive_seed_account(vault, seed)
    instructions: List[Instruction] = []
    if rent_lamports > 0:
        instructions.append(
            transfer(TransferParams(from_pubkey=vault, to_pubkey=split_account, lamports=rent_lamports))
        )
    instructions.append(
        allocate_with_seed(
            AllocateWithSeedParams(
                address=split_account,
                base=vault,
                seed=seed,
                space=STAKE_ACCOUNT_SPACE,
                owner=STAKE_PROGRAM_ID,
            )
        )
    )
    instructions.append(split(stake_account, vault, split_account, lamports))
    return instructions, split_account
