import logging
import sys


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Install a single stderr handler on the root logger.

    Safe to call more than once: previously installed handlers are removed
    so repeated app construction (tests, reloads) does not duplicate lines.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)

    # SQL echo is controlled by settings.database_echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
