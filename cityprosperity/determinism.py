"""
Determinism utilities for the City Prosperity Index engine.

Features:
- Controlled timestamp generation with a freezable clock
- Half-up decimal rounding of stored scores
- Opaque record identifiers
"""

import math
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Optional
from uuid import uuid4


class DeterministicClock:
    """
    A clock that can be frozen for testing and auditing.

    All record timestamps go through this clock so that tests can pin
    ``created_at`` / ``updated_at`` and production timestamps carry no
    microseconds.
    """

    _instance = None
    _lock = threading.Lock()
    _frozen_time: Optional[datetime] = None

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    @classmethod
    def now(cls, tz=None) -> datetime:
        """
        Get current time, either real or frozen.

        Args:
            tz: Timezone info (defaults to UTC)

        Returns:
            Current datetime without microseconds
        """
        instance = cls()
        if instance._frozen_time is not None:
            if tz is not None:
                return instance._frozen_time.replace(tzinfo=tz)
            return instance._frozen_time
        return datetime.now(tz or timezone.utc).replace(microsecond=0)

    @classmethod
    def utcnow(cls) -> datetime:
        """Get current UTC time."""
        return cls.now(timezone.utc)

    @classmethod
    def freeze(cls, frozen_time: Optional[datetime] = None):
        """
        Freeze clock at specific time.

        Args:
            frozen_time: Time to freeze at (defaults to current time)
        """
        instance = cls()
        if frozen_time is None:
            frozen_time = datetime.now(timezone.utc).replace(microsecond=0)
        instance._frozen_time = frozen_time

    @classmethod
    def unfreeze(cls):
        """Unfreeze the clock."""
        cls()._frozen_time = None

    @classmethod
    def is_frozen(cls) -> bool:
        return cls()._frozen_time is not None

    @classmethod
    @contextmanager
    def frozen(cls, frozen_time: Optional[datetime] = None):
        """
        Context manager for temporarily freezing time.

        Usage:
            with DeterministicClock.frozen(datetime(2025, 1, 1, tzinfo=timezone.utc)):
                record = merge_submission(...)
        """
        cls.freeze(frozen_time)
        try:
            yield
        finally:
            cls.unfreeze()


def round_half_up(value: float, places: int = 2) -> float:
    """
    Round a float half-up to a fixed number of decimal places.

    Goes through ``Decimal(str(value))`` so that 2.675 rounds to 2.68
    rather than the binary-float result 2.67.

    Args:
        value: Value to round
        places: Decimal places to keep

    Returns:
        Rounded float

    Raises:
        ValueError: If value is NaN or infinite
    """
    if not math.isfinite(value):
        raise ValueError(f"Cannot round non-finite value {value!r}")
    number = Decimal(str(value))
    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the kept places
        ctx.prec = max(ctx.prec, number.adjusted() + places + 2)
        return float(number.quantize(quantum, rounding=ROUND_HALF_UP))


def new_record_id() -> str:
    """Generate an opaque identifier for a new calculation record."""
    return uuid4().hex


__all__ = [
    "DeterministicClock",
    "round_half_up",
    "new_record_id",
]
