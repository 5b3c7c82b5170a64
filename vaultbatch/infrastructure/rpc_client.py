"""
Ledger RPC Client
=================
Thin async facade over solana-py's AsyncClient.

Returns plain Python values (bytes, ints, small dataclasses) so the batch
engine never touches RPC response objects, and converts transport
failures into RpcError / ProtocolError.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from config.settings import Settings
from vaultbatch.shared.errors import BatchError, RpcError, classify_program_failure, truncate_message
from vaultbatch.shared.system.logging import Logger

T = TypeVar("T")


# Pairs, not a dict: solders enum members are unhashable
_CONFIRMATION_NAMES = (
    (TransactionConfirmationStatus.Processed, "processed"),
    (TransactionConfirmationStatus.Confirmed, "confirmed"),
    (TransactionConfirmationStatus.Finalized, "finalized"),
)


def confirmation_name(status: Any) -> Optional[str]:
    for member, name in _CONFIRMATION_NAMES:
        if status == member:
            return name
    return None


@dataclass(frozen=True)
class SignatureStatus:
    """Status of one submitted signature."""

    confirmation_status: Optional[str]  # processed | confirmed | finalized
    err: Any = None

    @property
    def is_finalized(self) -> bool:
        return self.confirmation_status == "finalized"


@dataclass(frozen=True)
class KeyedAccount:
    pubkey: Pubkey
    lamports: int
    data: bytes


@dataclass(frozen=True)
class RpcConfig:
    url: str = ""
    max_retries: int = 3
    retry_delay_sec: float = 0.5


class LedgerRpc:
    """
    Async ledger reads and submission.

    Usage:
        rpc = LedgerRpc(RpcConfig(url=Settings.RPC_URL))
        data = await rpc.get_account_data(pubkey)
        await rpc.close()
    """

    def __init__(self, config: Optional[RpcConfig] = None, client: Optional[AsyncClient] = None):
        self.config = config or RpcConfig(url=Settings.RPC_URL, max_retries=Settings.SEND_MAX_RETRIES)
        self.client = client or AsyncClient(self.config.url, commitment=Confirmed)

        # Stats
        self._requests = 0
        self._errors = 0

    async def close(self) -> None:
        await self.client.close()

    async def _call(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run a read with retry/backoff; wrap final failure as RpcError."""
        last_error: Optional[Exception] = None
        for attempt in range(max(1, self.config.max_retries)):
            self._requests += 1
            try:
                return await fn()
            except BatchError:
                raise
            except Exception as e:
                last_error = e
                self._errors += 1
                Logger.debug(f"[RPC] {name} failed (attempt {attempt + 1}): {e}")
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_delay_sec * (attempt + 1))
        raise RpcError(truncate_message(f"{name} failed: {last_error}"))

    # ═══════════════════════════════════════════════════════════════════════════
    # ACCOUNT READS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_account_data(self, pubkey: Pubkey) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        async def fetch():
            resp = await self.client.get_account_info(pubkey, encoding="base64")
            return bytes(resp.value.data) if resp.value is not None else None

        return await self._call("getAccountInfo", fetch)

    async def get_multiple_account_data(self, pubkeys: Sequence[Pubkey]) -> List[Optional[bytes]]:
        if not pubkeys:
            return []

        async def fetch():
            resp = await self.client.get_multiple_accounts(list(pubkeys), encoding="base64")
            return [bytes(acc.data) if acc is not None else None for acc in resp.value]

        return await self._call("getMultipleAccounts", fetch)

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        memcmp: Sequence[Tuple[int, Pubkey]] = (),
        data_size: Optional[int] = None,
    ) -> List[KeyedAccount]:
        """Filtered program-account scan."""
        filters: List[Any] = [MemcmpOpts(offset=offset, bytes=str(key)) for offset, key in memcmp]
        if data_size is not None:
            filters.append(data_size)

        async def fetch():
            resp = await self.client.get_program_accounts(
                program_id, encoding="base64", filters=filters or None
            )
            return [
                KeyedAccount(pubkey=item.pubkey, lamports=item.account.lamports, data=bytes(item.account.data))
                for item in resp.value
            ]

        return await self._call("getProgramAccounts", fetch)

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        async def fetch():
            resp = await self.client.get_minimum_balance_for_rent_exemption(size)
            return int(resp.value)

        return await self._call("getMinimumBalanceForRentExemption", fetch)

    # ═══════════════════════════════════════════════════════════════════════════
    # CLUSTER STATE
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_latest_blockhash(self) -> Hash:
        async def fetch():
            resp = await self.client.get_latest_blockhash()
            return resp.value.blockhash

        blockhash = await self._call("getLatestBlockhash", fetch)
        Logger.debug(f"[RPC] Fresh blockhash: {str(blockhash)[:16]}...")
        return blockhash

    async def get_epoch(self) -> int:
        async def fetch():
            resp = await self.client.get_epoch_info()
            return int(resp.value.epoch)

        return await self._call("getEpochInfo", fetch)

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[SignatureStatus]]:
        async def fetch():
            resp = await self.client.get_signature_statuses(
                [Signature.from_string(s) for s in signatures]
            )
            out: List[Optional[SignatureStatus]] = []
            for status in resp.value:
                if status is None:
                    out.append(None)
                    continue
                out.append(
                    SignatureStatus(
                        confirmation_status=confirmation_name(status.confirmation_status),
                        err=status.err,
                    )
                )
            return out

        return await self._call("getSignatureStatuses", fetch)

    async def get_transaction_logs(self, signature: str) -> List[str]:
        """Log lines of a landed transaction (empty when unavailable)."""
        async def fetch():
            resp = await self.client.get_transaction(
                Signature.from_string(signature), max_supported_transaction_version=0
            )
            if resp.value is None:
                return []
            meta = resp.value.transaction.meta
            return list(meta.log_messages or []) if meta is not None else []

        return await self._call("getTransaction", fetch)

    # ═══════════════════════════════════════════════════════════════════════════
    # SUBMISSION
    # ═══════════════════════════════════════════════════════════════════════════

    async def send_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False,
        stale_index_possible: bool = False,
    ) -> str:
        """
        Submit a signed transaction once.

        Preflight failures are decoded into the ProtocolError family; anything
        else becomes RpcError. Never retried here.
        """
        self._requests += 1
        try:
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed),
            )
        except RPCException as e:
            self._errors += 1
            payload = e.args[0] if e.args else None
            data = getattr(payload, "data", None)
            logs = list(getattr(data, "logs", None) or [])
            err = getattr(data, "err", None)
            if logs or err is not None:
                raise classify_program_failure(err, logs, stale_index_possible=stale_index_possible) from e
            raise RpcError(truncate_message(f"sendTransaction failed: {e}")) from e
        except Exception as e:
            self._errors += 1
            raise RpcError(truncate_message(f"sendTransaction failed: {e}")) from e

        return str(resp.value)

    async def simulate(self, tx: VersionedTransaction) -> Tuple[Any, List[str]]:
        """Simulate; returns (err, logs)."""
        async def fetch():
            resp = await self.client.simulate_transaction(tx, sig_verify=False)
            return resp.value.err, list(resp.value.logs or [])

        return await self._call("simulateTransaction", fetch)

    def get_stats(self) -> dict:
        return {"requests": self._requests, "errors": self._errors}
