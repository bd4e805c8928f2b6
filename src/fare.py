from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from core.exceptions import ValidationError
from settings import FareSettings


class CancellationBreakdown(BaseModel):
    """Detailed breakdown of a cancellation settlement."""

    base_fare: float = Field(ge=0)
    distance_charge: float = Field(ge=0)
    pickup_compensation: float = Field(ge=0)
    total: int = Field(ge=0)


class FareCalculator:
    """Computes trip quotes and cancellation settlements.

    Pure functions of their inputs and the configured rates: the same stored
    distance and quoted amount always reproduce the same settled amount.
    """

    def __init__(self, settings: FareSettings | None = None) -> None:
        self._settings = settings or FareSettings()

    @property
    def currency(self) -> str:
        return self._settings.currency

    @property
    def pickup_loss_fraction(self) -> float:
        return self._settings.pickup_loss_fraction

    def quote(self, distance_km: float) -> float:
        """Quote a trip from its route distance, rounded to two decimals."""
        if distance_km < 0:
            raise ValidationError("Distance must be non-negative", {"distance_km": distance_km})
        return round(distance_km * self._settings.per_km_rate, 2)

    def cancellation_breakdown(
        self, distance_traveled_km: float, original_amount: float
    ) -> CancellationBreakdown:
        if distance_traveled_km < 0:
            raise ValidationError(
                "Distance traveled must be non-negative",
                {"distance_traveled_km": distance_traveled_km},
            )
        if original_amount < 0:
            raise ValidationError(
                "Original amount must be non-negative", {"original_amount": original_amount}
            )

        base_fare = self._settings.base_fare
        distance_charge = distance_traveled_km * self._settings.cancel_rate_per_km
        pickup_compensation = original_amount * self._settings.pickup_loss_fraction
        total = _round_half_up(base_fare + distance_charge + pickup_compensation)

        return CancellationBreakdown(
            base_fare=base_fare,
            distance_charge=distance_charge,
            pickup_compensation=pickup_compensation,
            total=total,
        )

    def settle_cancellation(self, distance_traveled_km: float, original_amount: float) -> int:
        """Amount due when an accepted trip is cancelled.

        base fare + distance traveled * cancel rate + quoted amount * pickup loss
        fraction, rounded half-up to a whole currency unit.
        """
        return self.cancellation_breakdown(distance_traveled_km, original_amount).total


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
