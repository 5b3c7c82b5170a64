"""
Metadata Cache Unit Tests
=========================

Run with: python -m pytest tests/unit/test_metadata_cache.py -v
"""

from solders.pubkey import Pubkey


class TestValidators:

    def test_lookup_by_pubkey_or_string(self):
        from vaultbatch.staking.metadata_cache import MetadataCache

        cache = MetadataCache()
        vote = Pubkey.new_unique()
        cache.put_validator(vote, name="Helius", commission=5)

        assert cache.validator_name(vote) == "Helius"
        assert cache.validator_name(str(vote)) == "Helius"
        assert cache.get_validator(vote).commission == 5

    def test_unknown_or_missing_validator(self):
        from vaultbatch.staking.metadata_cache import MetadataCache

        cache = MetadataCache()

        assert cache.validator_name(None) is None
        assert cache.validator_name(Pubkey.new_unique()) is None


class TestTokens:

    def test_put_and_get(self):
        from vaultbatch.staking.metadata_cache import MetadataCache

        cache = MetadataCache()
        mint = Pubkey.new_unique()
        cache.put_token(mint, symbol="JitoSOL", decimals=9)

        token = cache.get_token(str(mint))
        assert (token.symbol, token.decimals) == ("JitoSOL", 9)
        assert cache.get_token(Pubkey.new_unique()) is None

    def test_clear_drops_validators_and_tokens(self):
        from vaultbatch.staking.metadata_cache import MetadataCache

        cache = MetadataCache()
        cache.put_validator(Pubkey.new_unique(), name="A")
        cache.put_token(Pubkey.new_unique(), symbol="B")
        assert len(cache) == 2

        cache.clear()
        assert len(cache) == 0
