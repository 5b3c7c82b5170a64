"""
Confirmation Waiter
===================
Polls signature statuses until every signature is finalized, any
signature errors, or the wait budget runs out.

A timeout is never read as success or failure of the transaction itself:
it is reported as "failed or unconfirmed".
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from config.settings import Settings
from vaultbatch.shared.errors import (
    BatchError,
    ConfirmationTimeoutError,
    classify_program_failure,
)
from vaultbatch.infrastructure.rpc_client import LedgerRpc, SignatureStatus
from vaultbatch.shared.system.logging import Logger


@dataclass(frozen=True)
class ConfirmationConfig:
    timeout_sec: float = field(default_factory=lambda: Settings.CONFIRMATION_TIMEOUT_S)
    poll_interval_sec: float = field(default_factory=lambda: Settings.POLL_INTERVAL_S)


class ConfirmationWaiter:
    """
    Usage:
        waiter = ConfirmationWaiter(rpc)
        await waiter.confirm(signature)   # raises on failure / timeout
    """

    def __init__(self, rpc: LedgerRpc, config: Optional[ConfirmationConfig] = None):
        self.rpc = rpc
        self.config = config or ConfirmationConfig()

    async def wait(self, signatures: Sequence[str]) -> List[Optional[SignatureStatus]]:
        """
        Latest statuses once all are finalized or any has an error; on
        timeout, whatever was last observed.
        """
        deadline = time.monotonic() + self.config.timeout_sec
        latest: List[Optional[SignatureStatus]] = [None] * len(signatures)

        while True:
            try:
                latest = await self.rpc.get_signature_statuses(list(signatures))
            except BatchError as e:
                Logger.debug(f"[CONFIRM] Status poll failed: {e}")

            all_final = all(s is not None and s.is_finalized for s in latest)
            any_error = any(s is not None and s.err is not None for s in latest)
            if all_final or any_error:
                return latest

            if time.monotonic() >= deadline:
                Logger.debug(f"[CONFIRM] Timeout after {self.config.timeout_sec}s, returning latest statuses")
                return latest
            await asyncio.sleep(self.config.poll_interval_sec)

    async def confirm(self, signature: str, stale_index_possible: bool = False) -> SignatureStatus:
        """
        Wait for one signature to finalize.

        Raises:
            ProtocolError: the transaction landed with an error
            ConfirmationTimeoutError: not finalized within the budget
        """
        status = (await self.wait([signature]))[0]

        if status is not None and status.err is not None:
            logs: List[str] = []
            try:
                logs = await self.rpc.get_transaction_logs(signature)
            except BatchError as e:
                Logger.debug(f"[CONFIRM] Could not fetch logs for {signature[:12]}...: {e}")
            raise classify_program_failure(
                status.err, logs, signature=signature, stale_index_possible=stale_index_possible
            )

        if status is None or not status.is_finalized:
            raise ConfirmationTimeoutError(
                f"Transaction {signature[:12]}... failed or unconfirmed after "
                f"{self.config.timeout_sec:.0f}s",
                {"signature": signature},
            )

        Logger.debug(f"[CONFIRM] {signature[:12]}... finalized")
        return status
