"""Configuration and logging setup for proctelemetry."""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from proctelemetry.errors import InvalidArgument

PROCFS_ENV = "PROCTELEMETRY_PROCFS"


def _sysconf(name: str, fallback: int) -> int:
    try:
        return os.sysconf(name)
    except (ValueError, OSError, AttributeError):
        return fallback


@dataclass(slots=True, frozen=True)
class TelemetryConfig:
    """
    Where to read kernel state from and how to convert its units.

    The defaults describe the running host. Tests point ``procfs_root`` at a
    fake tree to get deterministic samples.
    """

    procfs_root: Path = Path("/proc")
    clock_ticks: int = field(default_factory=lambda: _sysconf("SC_CLK_TCK", 100))
    page_size: int = field(default_factory=lambda: _sysconf("SC_PAGE_SIZE", 4096))
    sector_size: int = 512

    def __post_init__(self) -> None:
        # frozen, so normalise through object.__setattr__
        object.__setattr__(self, "procfs_root", Path(self.procfs_root))
        for name in ("clock_ticks", "page_size", "sector_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise InvalidArgument(f"{name} must be a positive integer (got {value!r})")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "TelemetryConfig":
        """
        Build a config from environment overrides.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ
        kwargs = {}
        if env.get(PROCFS_ENV):
            kwargs["procfs_root"] = Path(env[PROCFS_ENV])
        return cls(**kwargs)


def setup_logger(
    name: str = "proctelemetry",
    level: int = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Configure and return a logger with consistent formatting.

    The library itself only logs at DEBUG; applications call this to see it.

    Args:
        name: Logger name. The default covers every proctelemetry module.
        level: Console logging level.
        log_file: Optional file path that receives DEBUG and above.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if log_file else level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
