import os
from pathlib import Path

from .constants import DATA_DIR, DB_FILE_NAME

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_PATH = BASE_DIR / DATA_DIR
DB_PATH = Path(os.environ.get("FULFILLMENT_LEDGER_DB", str(DATA_PATH / DB_FILE_NAME)))

# seconds a writer waits for the per-transaction lock before giving up
LOCK_TIMEOUT_SECONDS = float(os.environ.get("FULFILLMENT_LEDGER_LOCK_TIMEOUT", "5"))
BUSY_RETRIES = 3
BUSY_BACKOFF_SECONDS = 0.05

INVOICE_DUE_DAYS = 30
