from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask

PACKAGE_LOGGER = "ledgerpos"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _formatter(as_json: bool) -> logging.Formatter:
    if as_json:
        return JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")


def _file_handler(path: Path, level: int, as_json: bool) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(_formatter(as_json))
    fh.setLevel(level)
    return fh


def configure_logging(app: Flask) -> None:
    """
    Configure the package logger once per process.

    Console output always; with LOG_DIR set, also rotating app.log,
    errors.log and transactions.log (sale/refund/stock events).
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    as_json = bool(app.config.get("LOG_JSON", False))

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(level)
    app.logger.setLevel(level)
    if pkg_logger.handlers:
        return

    console = logging.StreamHandler()
    console.setFormatter(_formatter(as_json))
    pkg_logger.addHandler(console)

    logs_dir = app.config.get("LOG_DIR")
    if not logs_dir:
        return

    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    pkg_logger.addHandler(_file_handler(logs_dir / "app.log", logging.INFO, as_json))
    pkg_logger.addHandler(_file_handler(logs_dir / "errors.log", logging.ERROR, as_json))

    tx_handler = _file_handler(logs_dir / "transactions.log", logging.INFO, as_json)
    for name in ("services.sales_service", "services.refund_service", "services.stock_service"):
        logging.getLogger(f"{PACKAGE_LOGGER}.{name}").addHandler(tx_handler)
