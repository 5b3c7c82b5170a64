"""Memo program helper: attach an optional note signed by the vault."""

from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


def create_memo_instruction(memo: str, signer: Pubkey) -> Optional[Instruction]:
    """Return a memo instruction, or None for blank memo text."""
    text = (memo or "").strip()
    if not text:
        return None
    return Instruction(
        MEMO_PROGRAM_ID,
        text.encode("utf-8"),
        [AccountMeta(signer, is_signer=True, is_writable=False)],
    )


def add_memo(instructions: List[Instruction], memo: Optional[str], signer: Pubkey) -> List[Instruction]:
    memo_ix = create_memo_instruction(memo or "", signer)
    if memo_ix is not None:
        instructions.append(memo_ix)
    return instructions
