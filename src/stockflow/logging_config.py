from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

MAX_BYTES = 2_000_000
BACKUP_COUNT = 5

# receipts, checkouts and returns share one audit file
TRANSACTION_LOGGERS = ("stockflow.receipts", "stockflow.sales", "stockflow.returns")

ROOT_FILES = (
    ("app.log", logging.INFO),
    ("errors.log", logging.ERROR),
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Messages keep the ``event key=value ...`` shape used across the engine,
    so the payload stays flat.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "func": record.funcName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    handler.setLevel(level)
    return handler


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    """Attach the file handlers once per process; later calls only adjust the level."""
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    for filename, file_level in ROOT_FILES:
        root.addHandler(_rotating(logs_dir / filename, file_level))

    audit = _rotating(logs_dir / "transactions.log", logging.INFO)
    for name in TRANSACTION_LOGGERS:
        tx_logger = logging.getLogger(name)
        tx_logger.addHandler(audit)
        tx_logger.setLevel(logging.INFO)
