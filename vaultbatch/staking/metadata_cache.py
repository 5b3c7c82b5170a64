"""Validator / token display metadata, passed explicitly to builders."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from solders.pubkey import Pubkey

Key = Union[str, Pubkey]


@dataclass
class ValidatorMetadata:
    vote_account: str
    name: Optional[str] = None
    identity: Optional[str] = None
    commission: Optional[int] = None
    updated_at: float = field(default_factory=time.time)


@dataclass
class TokenMetadata:
    mint: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = None


class MetadataCache:
    """
    In-memory lookup. Filling it (registry fetch, chain scan) is the
    caller's job.
    """

    def __init__(self) -> None:
        self._validators: Dict[str, ValidatorMetadata] = {}
        self._tokens: Dict[str, TokenMetadata] = {}

    def put_validator(self, vote_account: Key, name: Optional[str] = None, **kwargs) -> ValidatorMetadata:
        meta = ValidatorMetadata(vote_account=str(vote_account), name=name, **kwargs)
        self._validators[str(vote_account)] = meta
        return meta

    def get_validator(self, vote_account: Key) -> Optional[ValidatorMetadata]:
        return self._validators.get(str(vote_account))

    def validator_name(self, vote_account: Optional[Key]) -> Optional[str]:
        if vote_account is None:
            return None
        meta = self.get_validator(vote_account)
        return meta.name if meta else None

    def put_token(self, mint: Key, symbol: Optional[str] = None, **kwargs) -> TokenMetadata:
        meta = TokenMetadata(mint=str(mint), symbol=symbol, **kwargs)
        self._tokens[str(mint)] = meta
        return meta

    def get_token(self, mint: Key) -> Optional[TokenMetadata]:
        return self._tokens.get(str(mint))

    def clear(self) -> None:
        self._validators.clear()
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._validators) + len(self._tokens)
