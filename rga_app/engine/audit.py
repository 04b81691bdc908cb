from datetime import datetime
import logging
import platform

logger = logging.getLogger(__name__)


def start_audit(source: str = "") -> list[str]:
    # run time and host go to the log only; the trail describes the data
    logger.info("Analysis start: %s on %s", datetime.now().isoformat(), platform.platform())
    return [f"Analysis of {source or 'unnamed scan'}"]


def log_step(audit: list[str], msg: str, *args) -> None:
    text = msg % args if args else msg
    audit.append(text)
    logger.debug(text)
