from __future__ import annotations

import json
import logging
import os

import uvicorn

from shiftsync.config_manager import ConfigManager


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))


def main() -> None:
    config = ConfigManager(os.getenv("SHIFTSYNC_CONFIG_PATH", "config.yaml")).load()
    setup_logging(os.getenv("SHIFTSYNC_LOG_LEVEL") or config.logging.level)
    host = os.getenv("SHIFTSYNC_HOST", "0.0.0.0")
    port = int(os.getenv("SHIFTSYNC_PORT", "8080"))
    uvicorn.run("shiftsync.web_admin:create_app", factory=True, host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
