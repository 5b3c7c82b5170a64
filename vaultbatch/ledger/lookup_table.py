"""
Address Lookup Table decoding.

Layout: 56-byte meta header followed by packed 32-byte addresses.
"""

from typing import List

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.pubkey import Pubkey

from vaultbatch.ledger.borsh import LayoutError

LOOKUP_TABLE_META_SIZE = 56


def decode_lookup_table_addresses(data: bytes) -> List[Pubkey]:
    raw = bytes(data)
    if len(raw) < LOOKUP_TABLE_META_SIZE:
        raise LayoutError("Lookup table account too short")
    body = raw[LOOKUP_TABLE_META_SIZE:]
    if len(body) % 32:
        raise LayoutError("Lookup table address area is not 32-byte aligned")
    return [Pubkey.from_bytes(body[i:i + 32]) for i in range(0, len(body), 32)]


def to_lookup_table_account(key: Pubkey, data: bytes) -> AddressLookupTableAccount:
    return AddressLookupTableAccount(key=key, addresses=decode_lookup_table_addresses(data))
