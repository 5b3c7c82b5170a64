import os
from dotenv import load_dotenv

# Load Environment Variables from project root .env
env_path = os.path.join(os.path.dirname(__file__), "../.env")
load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # ═══════════════════════════════════════════════════════════════════
    # VAULTBATCH CONFIGURATION (ENV-Based)
    # ═══════════════════════════════════════════════════════════════════

    # Suppress console output; the file log is always written
    SILENT_MODE = _env_bool("SILENT_MODE", False)

    # Paths
    DATA_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../data"))
    LOG_DIR = os.getenv(
        "LOG_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "../logs"))
    )

    # ═══════════════════════════════════════════════════════════════════
    # LEDGER CONNECTION
    # ═══════════════════════════════════════════════════════════════════
    RPC_URL = os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com")

    # Squads v4 multisig program (override for forks / custom deployments)
    MULTISIG_PROGRAM_ID = os.getenv(
        "MULTISIG_PROGRAM_ID", "SQDS4ep65T869zMMBKyuUq6aD6EgTu8psMjkvj52pCf"
    )
    MULTISIG_ADDRESS = os.getenv("MULTISIG_ADDRESS", "")
    KEYPAIR_PATH = os.getenv("KEYPAIR_PATH", "~/.config/solana/id.json")

    # ═══════════════════════════════════════════════════════════════════
    # BATCH LIMITS
    # ═══════════════════════════════════════════════════════════════════
    MAX_TX_BYTES = _env_int("MAX_TX_BYTES", 1232)  # Packet data ceiling
    MAX_BATCH_INSTRUCTIONS = _env_int("MAX_BATCH_INSTRUCTIONS", 10)
    MAX_BATCH_APPROVALS = _env_int("MAX_BATCH_APPROVALS", 12)
    MAX_BATCH_EXECUTES = _env_int("MAX_BATCH_EXECUTES", 10)

    # ═══════════════════════════════════════════════════════════════════
    # SUBMISSION & CONFIRMATION
    # ═══════════════════════════════════════════════════════════════════
    CONFIRMATION_TIMEOUT_S = _env_float("CONFIRMATION_TIMEOUT_S", 30.0)
    POLL_INTERVAL_S = _env_float("POLL_INTERVAL_S", 0.5)
    SEND_MAX_RETRIES = _env_int("SEND_MAX_RETRIES", 3)

    # Execute transactions carry their own compute budget
    PRIORITY_FEE_MICRO_LAMPORTS = _env_int("PRIORITY_FEE_MICRO_LAMPORTS", 5000)
    COMPUTE_UNIT_LIMIT = _env_int("COMPUTE_UNIT_LIMIT", 200_000)

    # ═══════════════════════════════════════════════════════════════════
    # STAKING
    # ═══════════════════════════════════════════════════════════════════
    LAMPORTS_PER_SOL = 1_000_000_000
    MIN_SPLIT_BUFFER_SOL = _env_float("MIN_SPLIT_BUFFER_SOL", 0.1)

    # Surfaced error text is capped for toasts / terminal output
    ERROR_MESSAGE_MAX_CHARS = 200
