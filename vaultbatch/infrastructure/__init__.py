# Infrastructure package for the ledger RPC and signing
from vaultbatch.infrastructure.rpc_client import (
    LedgerRpc,
    RpcConfig,
    SignatureStatus,
    KeyedAccount,
)
from vaultbatch.infrastructure.signer import KeypairSigner, Signer, load_keypair
