"""
Structured logging for environment administration.

Every record can carry the principal, the action and the resource it touched;
``log_action`` attaches them and ``JSONFormatter`` emits them as one JSON line.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

ACTION_FIELDS = ("user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset action fields are left out"""
    
    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage()
        }
        for name in ACTION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", logger_name: str = "env_admin",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Point the application logger at a single handler.
    
    ``log_format`` other than "json" selects plain text. Without ``log_file``
    records go to stderr. Calling this again replaces the previous handler.
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    
    handler = logging.FileHandler(log_file, encoding="utf-8") if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """Log ``message`` at ``level`` with whichever action fields are set"""
    values = dict(zip(ACTION_FIELDS, (user_id, action, resource, extra)))
    fields = {name: value for name, value in values.items() if value}
    logger.log(getattr(logging, level.upper()), message, extra=fields)
