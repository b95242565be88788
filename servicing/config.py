"""Configuration for the servicing engine."""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Context, Decimal, ROUND_HALF_UP
import os
from typing import Optional

from .core import WORKING_PRECISION, ValidationError, working_context
from .logging import setup_logging


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine-wide settings.

    Attributes:
        working_precision: Significant digits for pro-rata and penalty
            arithmetic. Never below 20.
        amount_places: When set, settlement monetary outputs are quantized to
            this many decimal places (half-up). None keeps full precision.
        max_workers: Thread-pool size for compose_states() and the portfolio
            queries built on it. None lets the executor choose.
        log_level: Root log level applied by configure_logging().
        log_format: "standard" or "json", applied by configure_logging().
    """

    working_precision: int = WORKING_PRECISION
    amount_places: Optional[int] = None
    max_workers: Optional[int] = None
    log_level: str = "INFO"
    log_format: str = "standard"

    def __post_init__(self):
        if self.working_precision < WORKING_PRECISION:
            raise ValidationError(
                f"working_precision must be at least {WORKING_PRECISION}, "
                f"got {self.working_precision}",
                field="working_precision", code="precision-too-low",
            )
        if self.amount_places is not None and self.amount_places < 0:
            raise ValidationError(
                "amount_places must not be negative",
                field="amount_places", code="negative-places",
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ValidationError(
                "max_workers must be positive",
                field="max_workers", code="non-positive-workers",
            )

    def configure_logging(self) -> None:
        setup_logging(self.log_level, self.log_format)

    def decimal_context(self) -> Context:
        return working_context(self.working_precision)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round an output amount to amount_places, or return it unchanged."""
        if self.amount_places is None:
            return amount
        return amount.quantize(Decimal(1).scaleb(-self.amount_places), rounding=ROUND_HALF_UP)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        places = os.getenv("SERVICING_AMOUNT_PLACES")
        workers = os.getenv("SERVICING_MAX_WORKERS")
        return cls(
            working_precision=int(os.getenv("SERVICING_WORKING_PRECISION", str(WORKING_PRECISION))),
            amount_places=int(places) if places else None,
            max_workers=int(workers) if workers else None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )


DEFAULT_CONFIG = EngineConfig()
