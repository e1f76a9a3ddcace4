"""Runtime settings read from the environment, and logging setup."""
import dataclasses
import logging
import os
import typing as t


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _read_int(name: str, default: t.Optional[int]) -> t.Optional[int]:
    raw = os.getenv(name)

    if raw is None or not raw.strip():
        return default

    try:
        value = int(raw)

    except ValueError as err:
        raise ValueError(
            "Environment variable '{}' must be an integer (got {!r}).".format(
                name, raw
            )
        ) from err

    if value <= 0:
        raise ValueError(
            "Environment variable '{}' must be positive (got {}).".format(name, value)
        )

    return value


@dataclasses.dataclass(frozen=True)
class Settings:
    max_workers: t.Optional[int] = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            max_workers=_read_int("NUMNET_MAX_WORKERS", None),
            log_level=os.getenv("NUMNET_LOG_LEVEL", "WARNING").upper(),
        )

    def resolve_workers(self, max_workers: t.Optional[int] = None) -> int:
        if max_workers is not None:
            return int(max_workers)

        if self.max_workers is not None:
            return self.max_workers

        return os.cpu_count() or 1


def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: t.Optional[str] = None) -> None:
    """Attach a stream handler to the 'numnet' logger.

    The level defaults to NUMNET_LOG_LEVEL (WARNING when unset). Calling it
    again only updates the level.
    """
    level_name = (level or get_settings().log_level).upper()
    log_level = getattr(logging, level_name, logging.WARNING)

    logger = logging.getLogger("numnet")
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
