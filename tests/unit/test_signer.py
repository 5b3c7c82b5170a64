"""
Keypair Signer Unit Tests
=========================

Run with: python -m pytest tests/unit/test_signer.py -v
"""

import json

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature

from vaultbatch.ledger import stake_program


def _message(payer: Pubkey) -> MessageV0:
    ix = stake_program.deactivate(Pubkey.new_unique(), payer)
    return MessageV0.try_compile(payer, [ix], [], Hash.new_unique())


class TestKeypairSigner:

    @pytest.mark.asyncio
    async def test_signs_with_keypair(self):
        from vaultbatch.infrastructure.signer import KeypairSigner

        keypair = Keypair()
        signer = KeypairSigner(keypair)
        tx = await signer.sign_transaction(_message(keypair.pubkey()))

        assert tx.signatures[0] != Signature.default()
        assert tx.verify_with_results() == [True]

    @pytest.mark.asyncio
    async def test_prompt_sees_batch_size(self):
        from vaultbatch.infrastructure.signer import KeypairSigner

        keypair = Keypair()
        seen = []
        signer = KeypairSigner(keypair, prompt=lambda n: seen.append(n) or True)
        signed = await signer.sign_all_transactions([_message(keypair.pubkey()) for _ in range(3)])

        assert len(signed) == 3
        assert seen == [3]

    @pytest.mark.asyncio
    async def test_declined_prompt_is_user_rejection(self):
        from vaultbatch.infrastructure.signer import KeypairSigner
        from vaultbatch.shared.errors import UserRejectedError, is_user_rejection

        keypair = Keypair()
        signer = KeypairSigner(keypair, prompt=lambda n: False)

        with pytest.raises(UserRejectedError) as exc_info:
            await signer.sign_all_transactions([_message(keypair.pubkey())])
        assert is_user_rejection(exc_info.value)


class TestLoadKeypair:

    def test_from_json_file(self, tmp_path, monkeypatch):
        from vaultbatch.infrastructure.signer import load_keypair

        monkeypatch.delenv("SOLANA_PRIVATE_KEY", raising=False)
        keypair = Keypair()
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(keypair))))

        assert load_keypair(str(path)).pubkey() == keypair.pubkey()

    def test_from_env_base58(self, monkeypatch):
        from vaultbatch.infrastructure.signer import load_keypair

        keypair = Keypair()
        monkeypatch.setenv("SOLANA_PRIVATE_KEY", str(keypair))

        assert load_keypair().pubkey() == keypair.pubkey()

    def test_missing_file(self, tmp_path, monkeypatch):
        from vaultbatch.infrastructure.signer import load_keypair
        from vaultbatch.shared.errors import SignerUnavailableError

        monkeypatch.delenv("SOLANA_PRIVATE_KEY", raising=False)
        with pytest.raises(SignerUnavailableError):
            load_keypair(str(tmp_path / "missing.json"))

    def test_garbage_file(self, tmp_path, monkeypatch):
        from vaultbatch.infrastructure.signer import load_keypair
        from vaultbatch.shared.errors import SignerUnavailableError

        monkeypatch.delenv("SOLANA_PRIVATE_KEY", raising=False)
        path = tmp_path / "id.json"
        path.write_text("not json")
        with pytest.raises(SignerUnavailableError):
            load_keypair(str(path))
