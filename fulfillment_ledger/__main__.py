import os
import sys

from .api import create_app
from .config import DB_PATH
from .constants import APP_NAME
from .utils.loggers import get_logger

_log = get_logger(__name__)


def main():
    # python -m fulfillment_ledger [db_path]
    db_path = sys.argv[1] if len(sys.argv) > 1 else str(DB_PATH)
    host = os.environ.get("FULFILLMENT_LEDGER_HOST", "127.0.0.1")
    port = int(os.environ.get("FULFILLMENT_LEDGER_PORT", "5000"))

    app = create_app({"LEDGER_DB_PATH": db_path})
    _log.info("%s listening on %s:%s", APP_NAME, host, port)
    # one thread per request; each request opens its own connection
    app.run(host=host, port=port, threaded=True)


if __name__ == "__main__":
    main()
