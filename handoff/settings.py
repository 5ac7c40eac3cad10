"""Configuration for the support hand-off queue."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOGS_DIR.mkdir(exist_ok=True)
CHECKPOINT_DIR = Path(os.getenv("CHECKPOINT_DIR", str(BASE_DIR / "data")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Database connection
DATABASE_URL = os.getenv("DATABASE_URL")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "5"))

# Messaging gateway
GATEWAY_URL = os.getenv("GATEWAY_URL")
GATEWAY_TOKEN = os.getenv("GATEWAY_TOKEN")
NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", "4"))
INBOUND_POLL_INTERVAL = int(os.getenv("INBOUND_POLL_INTERVAL", "2"))  # seconds between gateway polls

# Operators (plain identity comparison)
OPERATOR_IDS = [v.strip() for v in os.getenv("OPERATOR_IDS", "").split(",") if v.strip()]
OPERATOR_CHAT_ID = os.getenv("OPERATOR_CHAT_ID")

# Response timeout
DEFAULT_RESPONSE_TIMEOUT_SECONDS = 300
MIN_RESPONSE_TIMEOUT_SECONDS = 10
USER_RESPONSE_TIMEOUT_SECONDS = os.getenv("USER_RESPONSE_TIMEOUT_SECONDS")  # validated by the sweeper
TIMEOUT_WARNING_LEAD_SECONDS = int(os.getenv("TIMEOUT_WARNING_LEAD_SECONDS", "60"))
SWEEP_INTERVAL = int(os.getenv("SWEEP_INTERVAL", "30"))  # seconds between timeout sweeps


def validate_config():
    """Validate required configuration."""
    errors = []

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if not GATEWAY_URL:
        errors.append("GATEWAY_URL is required")

    if DB_POOL_MIN < 1 or DB_POOL_MAX < DB_POOL_MIN:
        errors.append(f"Invalid pool bounds: DB_POOL_MIN={DB_POOL_MIN}, DB_POOL_MAX={DB_POOL_MAX}")

    if SWEEP_INTERVAL < 1:
        errors.append(f"SWEEP_INTERVAL must be positive: {SWEEP_INTERVAL}")

    if TIMEOUT_WARNING_LEAD_SECONDS < 0:
        errors.append(f"TIMEOUT_WARNING_LEAD_SECONDS must not be negative: {TIMEOUT_WARNING_LEAD_SECONDS}")

    if not OPERATOR_CHAT_ID:
        errors.append("OPERATOR_CHAT_ID is required")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
