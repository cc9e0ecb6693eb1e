import json
import logging

from .config import Settings

logger = logging.getLogger("certiwipe_gateway")

_json_enabled = True


def configure_logging(settings: Settings) -> None:
    global _json_enabled
    _json_enabled = settings.log_json
    logger.setLevel(settings.log_level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(handler)


def structured_log(event: str, level: int = logging.INFO, **fields):
    try:
        if _json_enabled:
            msg = json.dumps({"event": event, **fields}, default=str)
        else:
            msg = f"[{event}] " + " ".join(f"{k}={v}" for k, v in fields.items())
        logger.log(level, msg)
    except Exception:
        pass
