"""Engine defaults read from the environment.

The tolerances and limits used by the schedule generator are product
decisions rather than algorithmic constants, so each one can be overridden
with a ``LOAN_SCHEDULE_*`` environment variable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_PREFIX = "LOAN_SCHEDULE_"


@dataclass(frozen=True)
class EngineSettings:
    batch_size: int = 50
    max_payments_multiplier: int = 2
    max_payments_ceiling: int = 10000
    balance_tolerance: Decimal = Decimal("0.01")
    async_timeout: float = 5.0  # seconds, cooperative runs in the caller's loop
    worker_timeout: float = 30.0  # seconds, runs inside the worker process
    inline_threshold: int = 600  # payments
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from ``LOAN_SCHEDULE_*`` variables.

        Malformed or out-of-range values are ignored with a warning so a bad
        deployment variable never prevents the engine from starting.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            batch_size=_read(env, "BATCH_SIZE", int, defaults.batch_size, minimum=1),
            max_payments_multiplier=_read(
                env, "MAX_PAYMENTS_MULTIPLIER", int, defaults.max_payments_multiplier, minimum=1
            ),
            max_payments_ceiling=_read(
                env, "MAX_PAYMENTS_CEILING", int, defaults.max_payments_ceiling, minimum=1
            ),
            balance_tolerance=_read(
                env, "BALANCE_TOLERANCE", Decimal, defaults.balance_tolerance, minimum=Decimal("0")
            ),
            async_timeout=_read(env, "ASYNC_TIMEOUT", float, defaults.async_timeout, minimum=0.0),
            worker_timeout=_read(env, "WORKER_TIMEOUT", float, defaults.worker_timeout, minimum=0.0),
            inline_threshold=_read(env, "INLINE_THRESHOLD", int, defaults.inline_threshold, minimum=0),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
        )


def _read(env: Mapping[str, str], name: str, convert: Callable[[str], T], default: T, minimum: T) -> T:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = convert(raw.strip())
        in_range = value >= minimum
    except (ValueError, InvalidOperation):
        logger.warning("Ignoring malformed %s%s=%r", ENV_PREFIX, name, raw)
        return default
    if not in_range:
        logger.warning("Ignoring out-of-range %s%s=%r", ENV_PREFIX, name, raw)
        return default
    return value


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Return the process-wide settings, reading the environment once."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next ``get_settings`` re-reads the environment."""
    global _settings
    _settings = None
