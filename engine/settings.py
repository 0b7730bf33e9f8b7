"""Runtime settings read from the environment (and a local ``.env``)."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from schemas.composition import TemplateDialect

load_dotenv()

_LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class EngineSettings:
    default_region: str = "eastus"
    default_environment: str = "dev"
    default_dialect: TemplateDialect = TemplateDialect.BICEP
    max_workers: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        dialect = os.environ.get("COMPOSER_DEFAULT_DIALECT", "") or TemplateDialect.BICEP.value
        try:
            default_dialect = TemplateDialect(dialect.strip().lower())
        except ValueError:
            raise EnvironmentError(
                f"COMPOSER_DEFAULT_DIALECT must be one of "
                f"{', '.join(d.value for d in TemplateDialect)}, got {dialect!r}"
            ) from None
        return cls(
            default_region=os.environ.get("COMPOSER_DEFAULT_REGION", "") or "eastus",
            default_environment=os.environ.get("COMPOSER_DEFAULT_ENVIRONMENT", "") or "dev",
            default_dialect=default_dialect,
            max_workers=max(1, _int_env("COMPOSER_MAX_WORKERS", 1)),
            log_level=(os.environ.get("COMPOSER_LOG_LEVEL", "") or "INFO").upper(),
        )


def configure_logging(settings: EngineSettings | None = None) -> None:
    """Root logger setup for command-line entry points."""
    settings = settings or EngineSettings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=_LOG_FORMAT)
