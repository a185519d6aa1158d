"""
Central configuration for the NFT ingestion pipeline.
All production values come from environment variables with sensible defaults.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes"):
        return True
    if val in ("false", "0", "no"):
        return False
    return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_opt(key: str) -> Optional[str]:
    val = os.getenv(key, "").strip()
    return val or None


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------
RPC_URL = os.getenv("RPC_URL", "https://eth.llamarpc.com")
CONTRACT_ADDRESS = os.getenv(
    "CONTRACT_ADDRESS", "0x3965dEE5ef611d4dd74FC6B6c54c37F643208A5C"
)
RPC_TIMEOUT_SEC = _env_float("RPC_TIMEOUT_SEC", 30.0)

BATCH_SIZE = _env_int("BATCH_SIZE", 10)
BATCH_DELAY_SEC = _env_float("BATCH_DELAY_SEC", 1.0)
START_TOKEN = _env_int("START_TOKEN", 0)
MAX_TOKENS = _env_int("MAX_TOKENS", 10000)

# ---------------------------------------------------------------------------
# Local corpus
# ---------------------------------------------------------------------------
DATA_DIR = os.getenv("DATA_DIR", os.path.join(".", "indexed-data"))
URI_DIR = os.getenv("URI_DIR", os.path.join(".", "uri"))

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
# Native size of the collection's artwork, used when the markup omits it
SVG_WIDTH = _env_int("SVG_WIDTH", 936)
SVG_HEIGHT = _env_int("SVG_HEIGHT", 1080)
THUMB_WIDTH = _env_int("THUMB_WIDTH", 400)
THUMB_QUALITY = _env_int("THUMB_QUALITY", 85)

RENDER_PARALLELISM = _env_int("RENDER_PARALLELISM", 6)
RENDER_SETTLE_MS = _env_int("RENDER_SETTLE_MS", 500)
RENDER_TIMEOUT_SEC = _env_float("RENDER_TIMEOUT_SEC", 10.0)

OG_THUMB_BASE_URL = _env_opt("OG_THUMB_BASE_URL")
COLLECTION_NAME = os.getenv("COLLECTION_NAME", "Diabolical Machines")
COLLECTION_TITLE = os.getenv("COLLECTION_TITLE", "A Machine for Dying")
COLLECTION_TAGLINE = os.getenv("COLLECTION_TAGLINE", "On-Chain Animated NFT")

# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------
UPLOAD_PARALLELISM = _env_int("UPLOAD_PARALLELISM", 10)

S3_ENDPOINT = _env_opt("S3_ENDPOINT")
S3_BUCKET = _env_opt("S3_BUCKET")
S3_ACCESS_KEY = _env_opt("S3_ACCESS_KEY")
S3_SECRET_KEY = _env_opt("S3_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION", "auto")
BLOB_CACHE_CONTROL = os.getenv(
    "BLOB_CACHE_CONTROL", "public, max-age=31536000, immutable"
)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./local.db")
D1_ACCOUNT_ID = _env_opt("D1_ACCOUNT_ID")
D1_DATABASE_ID = _env_opt("D1_DATABASE_ID")
D1_API_TOKEN = _env_opt("D1_API_TOKEN")
D1_MAX_STATEMENTS = _env_int("D1_MAX_STATEMENTS", 500)

# Skip the local relational sink entirely (e.g. CI without a database)
SKIP_LOCAL_DB = _env_bool("SKIP_LOCAL_DB", False)


def get_upload_policy() -> dict:
    """Retry policy for blob transfers (consumed by RetryPolicy)."""
    return {
        "max_attempts": _env_int("UPLOAD_MAX_RETRIES", 3),
        "backoff_ms": _env_int("UPLOAD_BACKOFF_MS", 1000),
    }


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_PATH = _env_opt("LOG_PATH")


def configure_logging(level: Optional[str] = None) -> None:
    """Root logging for the run_*.py entry points."""
    handlers = [logging.StreamHandler()]
    if LOG_PATH:
        handlers.append(logging.FileHandler(LOG_PATH, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )
    # botocore is chatty at DEBUG/INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
