"""Shared logging configuration for belief revision tools.

Call ``configure_logging()`` once at a CLI entry point. The function is
idempotent: if the root logger already has handlers it does nothing.
"""

import logging
import os

LOG_DIR_ENV = "BELIEFS_LOG_DIR"
LOG_LEVEL_ENV = "BELIEFS_LOG_LEVEL"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger with a console handler and an optional file handler.

    $BELIEFS_LOG_LEVEL (e.g. "DEBUG") overrides ``level``. The file handler
    writes to $BELIEFS_LOG_DIR/beliefs.log and is only added when that
    variable is set.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    env_level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "").strip().upper())
    if isinstance(env_level, int):
        level = env_level

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    log_dir = os.environ.get(LOG_DIR_ENV)
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            fh = logging.FileHandler(os.path.join(log_dir, "beliefs.log"), mode="a")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError as e:
            logging.getLogger(__name__).warning(f"File logging disabled: {e}")

    root.setLevel(level)
