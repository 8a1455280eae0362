# logging_config.py
import logging
import logging.config
import logging.handlers
from pathlib import Path
from datetime import datetime
import json
import contextvars

# per-request identifier, set by the HTTP middleware
_request_id_ctx = contextvars.ContextVar("request_id", default="-")

class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("-")
        return True

def set_request_id(req_id: str):
    _request_id_ctx.set(req_id)

def get_logger(name: str = __name__) -> logging.Logger:
    return logging.getLogger(name)

LOG_DIR = Path("logs")
LOG_BACKUP_DAYS = 30

def _rotating(path: Path) -> dict:
    """Daily-rotated file handler config."""
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "level": "INFO",
        "formatter": "default",
        "filters": ["request_id"],
        "filename": str(path),
        "when": "midnight",
        "backupCount": LOG_BACKUP_DAYS,
        "encoding": "utf-8",
    }

def build_dict_config(json_fmt: bool = False, log_dir: Path = LOG_DIR) -> dict:
    fmt = (
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
        '"request_id":"%(request_id)s","msg":"%(message)s"}'
        if json_fmt
        else '%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s'
    )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "default": {
                "format": fmt,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "INFO",
                "formatter": "default",
                "filters": ["request_id"],
            },
            "file_app": _rotating(log_dir / "app.log"),
            "file_matching": _rotating(log_dir / "matching.log"),
        },
        "loggers": {
            "": {
                "level": "INFO",
                "handlers": ["console", "file_app"],
            },
            # scoring / candidate scans / claim transitions
            "matching": {
                "level": "INFO",
                "handlers": ["console", "file_matching"],
                "propagate": False,
            },
            "uvicorn": {"level": "INFO"},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO"},
        },
    }

def setup_logging(json_fmt: bool = False, log_dir: Path = LOG_DIR):
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_dict_config(json_fmt=json_fmt, log_dir=log_dir))

# ===== matching helpers =====
def log_match_event(event_type: str, details: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("matching")
    logger.info("MATCH_EVENT: %s", json.dumps({
        "timestamp": datetime.now().isoformat(),
        "event_type": event_type,
        "details": details
    }, ensure_ascii=False, default=str))

def log_score_breakdown(lost_id: str, found_id: str, composite: float, breakdown: dict,
                        logger: logging.Logger | None = None):
    logger = logger or get_logger("matching")
    logger.info("score lost=%s found=%s composite=%.2f time=%s distance=%s text=%s(%s) policy=%s",
                lost_id, found_id, composite,
                breakdown.get("time_score"), breakdown.get("distance_score"),
                breakdown.get("text_score"), breakdown.get("text_source"),
                breakdown.get("policy"))

def log_scan_summary(scan_info: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("matching")
    summary = {
        'report_id': scan_info.get('report_id'),
        'candidates': scan_info.get('candidates', 0),
        'scored': scan_info.get('scored', 0),
        'skipped': scan_info.get('skipped', 0),
        'accepted': scan_info.get('accepted', 0),
        'duration_seconds': scan_info.get('duration', 0),
    }
    logger.info("candidate scan finished: %s", json.dumps(summary, ensure_ascii=False))
