from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "/var/log/alpine-provisioner.log"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure root logging for a provisioning run.

    Notes:
    - /var/log is not writable for unprivileged preview runs. We still try the
      requested path first; if that fails we fall back to a file in the working
      directory and report the actual path.
    - Console output goes to stderr so the report on stdout stays clean.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_provisioner_configured", False):
        return getattr(logger, "_provisioner_log_path", log_path)

    chosen_path = log_path
    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler: Optional[logging.Handler] = None
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
    except OSError:
        fallback = str(Path.cwd() / "alpine-provisioner.log")
        file_handler = logging.FileHandler(fallback)
        chosen_path = fallback
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console.setLevel(logging.WARNING)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_provisioner_configured", True)
    setattr(logger, "_provisioner_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path
