"""
Squads v4 Multisig Codec
========================
Pure PDA derivation, instruction building and account decoding for the
Squads v4 multisig program.

100% testable without RPC or wallet connections.

Layouts follow the Anchor conventions of the program:
- instruction data = sha256("global:<ix_name>")[:8] + Borsh args
- account data     = sha256("account:<Name>")[:8] + Borsh fields
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from config.settings import Settings
from vaultbatch.ledger.borsh import BorshReader, BorshWriter, LayoutError


DEFAULT_PROGRAM_ID = Pubkey.from_string(Settings.MULTISIG_PROGRAM_ID)

SEED_PREFIX = b"multisig"
SEED_MULTISIG = b"multisig"
SEED_VAULT = b"vault"
SEED_TRANSACTION = b"transaction"
SEED_PROPOSAL = b"proposal"
SEED_EPHEMERAL_SIGNER = b"ephemeral_signer"


def _ix_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def _account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


IX_VAULT_TRANSACTION_CREATE = _ix_discriminator("vault_transaction_create")
IX_VAULT_TRANSACTION_EXECUTE = _ix_discriminator("vault_transaction_execute")
IX_CONFIG_TRANSACTION_EXECUTE = _ix_discriminator("config_transaction_execute")
IX_PROPOSAL_CREATE = _ix_discriminator("proposal_create")
IX_PROPOSAL_ACTIVATE = _ix_discriminator("proposal_activate")
IX_PROPOSAL_APPROVE = _ix_discriminator("proposal_approve")

ACCOUNT_MULTISIG = _account_discriminator("Multisig")
ACCOUNT_PROPOSAL = _account_discriminator("Proposal")
ACCOUNT_VAULT_TRANSACTION = _account_discriminator("VaultTransaction")
ACCOUNT_CONFIG_TRANSACTION = _account_discriminator("ConfigTransaction")


# ═══════════════════════════════════════════════════════════════════════════════
# PDA DERIVATION
# ═══════════════════════════════════════════════════════════════════════════════

def _u64(value: int) -> bytes:
    return int(value).to_bytes(8, "little")


def get_vault_pda(
    multisig_pda: Pubkey,
    index: int,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [SEED_PREFIX, bytes(multisig_pda), SEED_VAULT, bytes([index])],
        program_id,
    )


def get_transaction_pda(
    multisig_pda: Pubkey,
    index: int,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [SEED_PREFIX, bytes(multisig_pda), SEED_TRANSACTION, _u64(index)],
        program_id,
    )


def get_proposal_pda(
    multisig_pda: Pubkey,
    transaction_index: int,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [
            SEED_PREFIX,
            bytes(multisig_pda),
            SEED_TRANSACTION,
            _u64(transaction_index),
            SEED_PROPOSAL,
        ],
        program_id,
    )


def get_ephemeral_signer_pda(
    transaction_pda: Pubkey,
    ephemeral_signer_index: int,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [
            SEED_PREFIX,
            bytes(transaction_pda),
            SEED_EPHEMERAL_SIGNER,
            bytes([ephemeral_signer_index]),
        ],
        program_id,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ACCOUNT SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

class ProposalStatus(Enum):
    """Proposal state machine (tag order matches the on-chain enum)."""

    NONE = "None"  # No proposal account exists yet
    DRAFT = "Draft"
    ACTIVE = "Active"
    REJECTED = "Rejected"
    APPROVED = "Approved"
    EXECUTING = "Executing"
    EXECUTED = "Executed"
    CANCELLED = "Cancelled"

    @property
    def is_approvable(self) -> bool:
        return self in (ProposalStatus.NONE, ProposalStatus.DRAFT, ProposalStatus.ACTIVE)


# On-chain tag -> status; Executing is a unit variant with no timestamp
_STATUS_BY_TAG = {
    0: ProposalStatus.DRAFT,
    1: ProposalStatus.ACTIVE,
    2: ProposalStatus.REJECTED,
    3: ProposalStatus.APPROVED,
    4: ProposalStatus.EXECUTING,
    5: ProposalStatus.EXECUTED,
    6: ProposalStatus.CANCELLED,
}


@dataclass(frozen=True)
class MultisigMember:
    key: Pubkey
    permissions: int


@dataclass(frozen=True)
class MultisigAccount:
    create_key: Pubkey
    config_authority: Pubkey
    threshold: int
    time_lock: int
    transaction_index: int
    stale_transaction_index: int
    rent_collector: Optional[Pubkey]
    bump: int
    members: Tuple[MultisigMember, ...] = ()

    @property
    def is_controlled(self) -> bool:
        """Controlled multisigs route config changes through the authority."""
        return self.config_authority != Pubkey.default()

    def is_member(self, key: Pubkey) -> bool:
        return any(m.key == key for m in self.members)


@dataclass(frozen=True)
class ProposalAccount:
    multisig: Pubkey
    transaction_index: int
    status: ProposalStatus
    status_timestamp: Optional[int]
    bump: int
    approved: Tuple[Pubkey, ...] = ()
    rejected: Tuple[Pubkey, ...] = ()
    cancelled: Tuple[Pubkey, ...] = ()

    def has_approved(self, member: Pubkey) -> bool:
        return member in self.approved


@dataclass(frozen=True)
class CompiledInnerInstruction:
    program_id_index: int
    account_indexes: bytes
    data: bytes


@dataclass(frozen=True)
class InnerAddressTableLookup:
    account_key: Pubkey
    writable_indexes: bytes
    readonly_indexes: bytes


@dataclass(frozen=True)
class VaultTransactionMessage:
    """Message stored inside a vault transaction (and passed at creation)."""

    num_signers: int
    num_writable_signers: int
    num_writable_non_signers: int
    account_keys: Tuple[Pubkey, ...]
    instructions: Tuple[CompiledInnerInstruction, ...]
    address_table_lookups: Tuple[InnerAddressTableLookup, ...] = ()

    def is_signer_index(self, index: int) -> bool:
        return index < self.num_signers

    def is_static_writable_index(self, index: int) -> bool:
        if index < self.num_writable_signers:
            return True
        if index >= self.num_signers:
            return index - self.num_signers < self.num_writable_non_signers
        return False


@dataclass(frozen=True)
class VaultTransactionAccount:
    multisig: Pubkey
    creator: Pubkey
    index: int
    bump: int
    vault_index: int
    vault_bump: int
    ephemeral_signer_bumps: bytes
    message: VaultTransactionMessage


@dataclass(frozen=True)
class ConfigTransactionAccount:
    multisig: Pubkey
    creator: Pubkey
    index: int
    bump: int


# ═══════════════════════════════════════════════════════════════════════════════
# ACCOUNT DECODERS
# ═══════════════════════════════════════════════════════════════════════════════

def _expect_discriminator(data: bytes, discriminator: bytes, name: str) -> BorshReader:
    if len(data) < 8 or bytes(data[:8]) != discriminator:
        raise LayoutError(f"Account is not a {name}")
    return BorshReader(data, offset=8)


def decode_multisig(data: bytes) -> MultisigAccount:
    r = _expect_discriminator(data, ACCOUNT_MULTISIG, "Multisig")
    create_key = r.pubkey()
    config_authority = r.pubkey()
    threshold = r.u16()
    time_lock = r.u32()
    transaction_index = r.u64()
    stale_transaction_index = r.u64()
    rent_collector = r.option(r.pubkey)
    bump = r.u8()
    members = r.vec(lambda: MultisigMember(key=r.pubkey(), permissions=r.u8()))
    return MultisigAccount(
        create_key=create_key,
        config_authority=config_authority,
        threshold=threshold,
        time_lock=time_lock,
        transaction_index=transaction_index,
        stale_transaction_index=stale_transaction_index,
        rent_collector=rent_collector,
        bump=bump,
        members=tuple(members),
    )


def decode_proposal(data: bytes) -> ProposalAccount:
    r = _expect_discriminator(data, ACCOUNT_PROPOSAL, "Proposal")
    multisig = r.pubkey()
    transaction_index = r.u64()
    tag = r.u8()
    if tag not in _STATUS_BY_TAG:
        raise LayoutError(f"Unknown proposal status tag {tag}")
    status = _STATUS_BY_TAG[tag]
    timestamp = None if status is ProposalStatus.EXECUTING else r.i64()
    bump = r.u8()
    approved = r.vec(r.pubkey)
    rejected = r.vec(r.pubkey)
    cancelled = r.vec(r.pubkey)
    return ProposalAccount(
        multisig=multisig,
        transaction_index=transaction_index,
        status=status,
        status_timestamp=timestamp,
        bump=bump,
        approved=tuple(approved),
        rejected=tuple(rejected),
        cancelled=tuple(cancelled),
    )


def _read_stored_message(r: BorshReader) -> VaultTransactionMessage:
    num_signers = r.u8()
    num_writable_signers = r.u8()
    num_writable_non_signers = r.u8()
    account_keys = r.vec(r.pubkey)
    instructions = r.vec(
        lambda: CompiledInnerInstruction(
            program_id_index=r.u8(),
            account_indexes=r.bytes_vec(),
            data=r.bytes_vec(),
        )
    )
    lookups = r.vec(
        lambda: InnerAddressTableLookup(
            account_key=r.pubkey(),
            writable_indexes=r.bytes_vec(),
            readonly_indexes=r.bytes_vec(),
        )
    )
    return VaultTransactionMessage(
        num_signers=num_signers,
        num_writable_signers=num_writable_signers,
        num_writable_non_signers=num_writable_non_signers,
        account_keys=tuple(account_keys),
        instructions=tuple(instructions),
        address_table_lookups=tuple(lookups),
    )


def decode_vault_transaction(data: bytes) -> VaultTransactionAccount:
    r = _expect_discriminator(data, ACCOUNT_VAULT_TRANSACTION, "VaultTransaction")
    multisig = r.pubkey()
    creator = r.pubkey()
    index = r.u64()
    bump = r.u8()
    vault_index = r.u8()
    vault_bump = r.u8()
    ephemeral_signer_bumps = r.bytes_vec()
    message = _read_stored_message(r)
    return VaultTransactionAccount(
        multisig=multisig,
        creator=creator,
        index=index,
        bump=bump,
        vault_index=vault_index,
        vault_bump=vault_bump,
        ephemeral_signer_bumps=ephemeral_signer_bumps,
        message=message,
    )


def decode_config_transaction(data: bytes) -> ConfigTransactionAccount:
    # Actions are not decoded: execution only needs the header
    r = _expect_discriminator(data, ACCOUNT_CONFIG_TRANSACTION, "ConfigTransaction")
    return ConfigTransactionAccount(
        multisig=r.pubkey(),
        creator=r.pubkey(),
        index=r.u64(),
        bump=r.u8(),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# INNER MESSAGE ENCODING
# ═══════════════════════════════════════════════════════════════════════════════

def compile_vault_message(
    instructions: Sequence[Instruction],
    vault_pda: Pubkey,
) -> VaultTransactionMessage:
    """
    Compile instructions into the message a vault transaction stores.

    Keys are deduplicated and ordered the same way a legacy message orders
    them (payer, writable signers, readonly signers, writable, readonly).
    """
    message = Message.new_with_blockhash(list(instructions), vault_pda, Hash.default())
    header = message.header
    num_signers = header.num_required_signatures
    num_keys = len(message.account_keys)
    return VaultTransactionMessage(
        num_signers=num_signers,
        num_writable_signers=num_signers - header.num_readonly_signed_accounts,
        num_writable_non_signers=num_keys - num_signers - header.num_readonly_unsigned_accounts,
        account_keys=tuple(message.account_keys),
        instructions=tuple(
            CompiledInnerInstruction(
                program_id_index=ix.program_id_index,
                account_indexes=bytes(ix.accounts),
                data=bytes(ix.data),
            )
            for ix in message.instructions
        ),
    )


def encode_transaction_message(message: VaultTransactionMessage) -> bytes:
    """
    Encode a message in the program's compact wire format.

    Vectors use u8 length prefixes except instruction data (u16).
    """
    out = bytearray()
    out.append(message.num_signers)
    out.append(message.num_writable_signers)
    out.append(message.num_writable_non_signers)

    out.append(len(message.account_keys))
    for key in message.account_keys:
        out.extend(bytes(key))

    out.append(len(message.instructions))
    for ix in message.instructions:
        out.append(ix.program_id_index)
        out.append(len(ix.account_indexes))
        out.extend(ix.account_indexes)
        out.extend(len(ix.data).to_bytes(2, "little"))
        out.extend(ix.data)

    out.append(len(message.address_table_lookups))
    for lookup in message.address_table_lookups:
        out.extend(bytes(lookup.account_key))
        out.append(len(lookup.writable_indexes))
        out.extend(lookup.writable_indexes)
        out.append(len(lookup.readonly_indexes))
        out.extend(lookup.readonly_indexes)

    return bytes(out)


# ═══════════════════════════════════════════════════════════════════════════════
# INSTRUCTION BUILDERS
# ═══════════════════════════════════════════════════════════════════════════════

def vault_transaction_create(
    multisig_pda: Pubkey,
    transaction_index: int,
    creator: Pubkey,
    vault_index: int,
    transaction_message: VaultTransactionMessage,
    rent_payer: Optional[Pubkey] = None,
    ephemeral_signers: int = 0,
    memo: Optional[str] = None,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    transaction_pda, _ = get_transaction_pda(multisig_pda, transaction_index, program_id)
    data = (
        BorshWriter(IX_VAULT_TRANSACTION_CREATE)
        .u8(vault_index)
        .u8(ephemeral_signers)
        .bytes_vec(encode_transaction_message(transaction_message))
        .option_string(memo)
        .to_bytes()
    )
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=True),
            AccountMeta(transaction_pda, is_signer=False, is_writable=True),
            AccountMeta(creator, is_signer=True, is_writable=False),
            AccountMeta(rent_payer or creator, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def proposal_create(
    multisig_pda: Pubkey,
    transaction_index: int,
    creator: Pubkey,
    rent_payer: Optional[Pubkey] = None,
    is_draft: bool = False,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    proposal_pda, _ = get_proposal_pda(multisig_pda, transaction_index, program_id)
    data = (
        BorshWriter(IX_PROPOSAL_CREATE)
        .u64(transaction_index)
        .bool(is_draft)
        .to_bytes()
    )
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=False),
            AccountMeta(proposal_pda, is_signer=False, is_writable=True),
            AccountMeta(creator, is_signer=True, is_writable=False),
            AccountMeta(rent_payer or creator, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def proposal_activate(
    multisig_pda: Pubkey,
    transaction_index: int,
    member: Pubkey,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    proposal_pda, _ = get_proposal_pda(multisig_pda, transaction_index, program_id)
    return Instruction(
        program_id,
        IX_PROPOSAL_ACTIVATE,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=False),
            AccountMeta(member, is_signer=True, is_writable=True),
            AccountMeta(proposal_pda, is_signer=False, is_writable=True),
        ],
    )


def proposal_approve(
    multisig_pda: Pubkey,
    transaction_index: int,
    member: Pubkey,
    memo: Optional[str] = None,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    proposal_pda, _ = get_proposal_pda(multisig_pda, transaction_index, program_id)
    data = BorshWriter(IX_PROPOSAL_APPROVE).option_string(memo).to_bytes()
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=False),
            AccountMeta(member, is_signer=True, is_writable=True),
            AccountMeta(proposal_pda, is_signer=False, is_writable=True),
        ],
    )


def config_transaction_execute(
    multisig_pda: Pubkey,
    transaction_index: int,
    member: Pubkey,
    rent_payer: Optional[Pubkey] = None,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    proposal_pda, _ = get_proposal_pda(multisig_pda, transaction_index, program_id)
    transaction_pda, _ = get_transaction_pda(multisig_pda, transaction_index, program_id)
    return Instruction(
        program_id,
        IX_CONFIG_TRANSACTION_EXECUTE,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=True),
            AccountMeta(member, is_signer=True, is_writable=False),
            AccountMeta(proposal_pda, is_signer=False, is_writable=True),
            AccountMeta(transaction_pda, is_signer=False, is_writable=False),
            AccountMeta(rent_payer or member, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def vault_transaction_execute(
    multisig_pda: Pubkey,
    transaction_index: int,
    member: Pubkey,
    vault_transaction: VaultTransactionAccount,
    lookup_table_addresses: Optional[dict] = None,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> Instruction:
    """
    Build the execute instruction for a stored vault transaction.

    `lookup_table_addresses` maps each lookup table key referenced by the
    stored message to its resolved address list.
    """
    proposal_pda, _ = get_proposal_pda(multisig_pda, transaction_index, program_id)
    transaction_pda, _ = get_transaction_pda(multisig_pda, transaction_index, program_id)
    remaining = execute_remaining_accounts(
        multisig_pda,
        transaction_pda,
        vault_transaction,
        lookup_table_addresses or {},
        program_id,
    )
    return Instruction(
        program_id,
        IX_VAULT_TRANSACTION_EXECUTE,
        [
            AccountMeta(multisig_pda, is_signer=False, is_writable=False),
            AccountMeta(proposal_pda, is_signer=False, is_writable=True),
            AccountMeta(transaction_pda, is_signer=False, is_writable=False),
            AccountMeta(member, is_signer=True, is_writable=False),
            *remaining,
        ],
    )


def execute_remaining_accounts(
    multisig_pda: Pubkey,
    transaction_pda: Pubkey,
    vault_transaction: VaultTransactionAccount,
    lookup_table_addresses: dict,
    program_id: Pubkey = DEFAULT_PROGRAM_ID,
) -> List[AccountMeta]:
    """
    Accounts the program expects after the fixed execute accounts:
    lookup tables, then static keys, then keys loaded from lookup tables.
    """
    message = vault_transaction.message
    vault_pda, _ = get_vault_pda(multisig_pda, vault_transaction.vault_index, program_id)
    # Vault and ephemeral signers are PDAs: the program signs for them
    program_signers = {vault_pda}
    for i in range(len(vault_transaction.ephemeral_signer_bumps)):
        program_signers.add(get_ephemeral_signer_pda(transaction_pda, i, program_id)[0])

    metas: List[AccountMeta] = [
        AccountMeta(lookup.account_key, is_signer=False, is_writable=False)
        for lookup in message.address_table_lookups
    ]

    for index, key in enumerate(message.account_keys):
        metas.append(
            AccountMeta(
                key,
                is_signer=message.is_signer_index(index) and key not in program_signers,
                is_writable=message.is_static_writable_index(index),
            )
        )

    for lookup in message.address_table_lookups:
        addresses = lookup_table_addresses.get(lookup.account_key)
        if addresses is None:
            raise LayoutError(f"Lookup table {lookup.account_key} not resolved")
        for i in lookup.writable_indexes:
            metas.append(AccountMeta(addresses[i], is_signer=False, is_writable=True))
        for i in lookup.readonly_indexes:
            metas.append(AccountMeta(addresses[i], is_signer=False, is_writable=False))

    return metas
