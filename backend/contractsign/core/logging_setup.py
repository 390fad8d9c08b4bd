import logging
import sys
from pathlib import Path

from contractsign.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger("contractsign")


def get_logger(component: str) -> logging.Logger:
    """Child logger handed to a pipeline component."""
    return logger.getChild(component)


def configure_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    target = log_file or settings.log_file
    if target:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # pyhanko and fontTools are chatty at INFO
    logging.getLogger("pyhanko").setLevel(logging.WARNING)
    logging.getLogger("fontTools").setLevel(logging.WARNING)
    return logger
