"""
Monitor Settings
================

Default values for the wallet monitor. Anything here can be overridden
through environment variables (or a .env file at the project root);
see Config.from_env() for the mapping.
"""

import os
from pathlib import Path

# Load .env file from project root
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

# =============================================================================
# LEDGER
# =============================================================================

RPC_URL = os.environ.get("RPC_URL", "https://bsc-dataseed.binance.org/")

# Native unit of the chain being watched
NATIVE_SYMBOL = "BNB"
NATIVE_DECIMALS = 18

EXPLORER_URL = "https://bscscan.com"

# =============================================================================
# TIMING SETTINGS
# =============================================================================

SCAN_INTERVAL_MS = 3000         # Time between loop ticks
BATCH_SIZE = 5                  # Blocks per tick when caught up

# When the loop falls more than CATCH_UP_THRESHOLD blocks behind head it
# widens the batch up to CATCH_UP_BATCH_SIZE blocks
CATCH_UP_THRESHOLD = 20
CATCH_UP_BATCH_SIZE = 20

ERROR_COOLDOWN_SEC = 5.0        # Pause after a failed tick

# Restored checkpoints further behind head than this are discarded and the
# loop starts live from head (~1h of BSC blocks)
RESUME_MAX_GAP = 1200

# =============================================================================
# RANGE SCANNER
# =============================================================================

REQUEST_DELAY_SEC = 0.1         # Delay between sequential block fetches
WAVE_DELAY_SEC = 0.1            # Delay between parallel block waves
MAX_CONCURRENT_BLOCKS = 10      # Hard ceiling on blocks fetched at once
MAX_CONCURRENT_REQUESTS = 10    # Open RPC requests per client
RPC_TIMEOUT_SEC = 15
RPC_MAX_RETRIES = 3
RPC_BACKOFF_SEC = 1.0

# =============================================================================
# FILTER / ENROLLMENT THRESHOLDS
# =============================================================================

# Native value window (in whole native units) for transactions to be considered
MIN_VALUE = "0"
MAX_VALUE = "10000"

# Minimum token amount (whole units) for a transfer to enroll its recipient.
# Also the list of "base tokens" whose transfers can induce enrollment.
BASE_TOKENS = {
    "0x55d398326f99059ff775485246999027b3197955": {"symbol": "USDT", "min_amount": "1000"},
    "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c": {"symbol": "WBNB", "min_amount": "1"},
}

# Minimum native amount received to enroll the recipient.
# Empty means the MIN_VALUE scan floor is used.
NATIVE_ENROLL_MIN = os.environ.get("NATIVE_ENROLL_MIN", "")

ENABLE_NEW_WALLET_DETECTION = True

# =============================================================================
# DELIVERY QUEUE
# =============================================================================

QUEUE_INTERVAL_MS = 200         # Dispatcher tick
QUEUE_BATCH_SIZE = 5            # Alerts sent per tick
QUEUE_MAX_RETRIES = 3           # Throttle retries before an alert is dropped
DEFAULT_RETRY_AFTER_SEC = 2.0   # Used when the sink gives no retry hint
QUEUE_CAPACITY = 10_000

# =============================================================================
# TELEGRAM SETTINGS
# =============================================================================

# Set via environment variables
BOT_TOKEN = os.environ.get("BOT_TOKEN", "")
CHAT_ID = os.environ.get("CHAT_ID", "")
THREAD_ID = os.environ.get("THREAD_ID", "")

MAX_MESSAGE_LENGTH = 4000  # Telegram limit is 4096

ALERT_TIMEZONE = "Asia/Shanghai"

# =============================================================================
# REPUTATION
# =============================================================================

DEBANK_API_URL = "https://pro-openapi.debank.com/v1/user/history_list"
DEBANK_CHAIN_ID = "bsc"

# =============================================================================
# STORAGE
# =============================================================================

STORAGE_PREFIX = "wallet:"
DB_PATH = str(PROJECT_ROOT / "data" / "walletwatch.db")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE", "logs/monitor.log")
