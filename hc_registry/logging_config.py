import logging
import sys

from hc_registry.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("hc_registry")

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

logger.setLevel(settings.LOG_LEVEL)


def set_logger_and_children_level(
    target_logger: logging.Logger, level: str | int
) -> list[logging.Logger]:
    """Set the level of a logger, its handlers and every child logger beneath it.

    Args:
        target_logger (logging.Logger): The parent logger
        level (str | int): The new logging level

    Returns:
        list[logging.Logger]: The loggers that were updated
    """
    updated = [target_logger]
    target_logger.setLevel(level)
    for handler in target_logger.handlers:
        handler.setLevel(level)

    prefix = f"{target_logger.name}."
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(prefix):
            child = logging.getLogger(name)
            child.setLevel(level)
            updated.append(child)

    return updated
