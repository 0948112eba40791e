"""Per-type intervention payload schemas.

The draft store keeps ``payload`` opaque. These models validate it at the
submission boundary, one schema per :class:`InterventionType`. Field names
follow the mobile form (camelCase); unknown keys are kept.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleetzen.engine.models.draft import InterventionType
from fleetzen.errors.draft_errors import InvalidArgumentError


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    notes: str | None = None


class WashingPayload(_PayloadBase):
    """Vehicle washing."""

    washType: Literal["exterior", "interior", "complete", "express"]  # noqa: N815
    products: list[str] = Field(default_factory=list)
    waterUsed: float | None = Field(default=None, ge=0, description="Litres")  # noqa: N815
    duration: int | None = Field(default=None, ge=0, description="Minutes")


class FuelDeliveryPayload(_PayloadBase):
    """Fuel delivered into a vehicle."""

    fuelType: Literal["diesel", "essence", "gpl"]  # noqa: N815
    quantity: float = Field(gt=0, description="Litres")
    pricePerUnit: float | None = Field(default=None, ge=0)  # noqa: N815
    pumpNumber: str | None = None  # noqa: N815
    odometerReading: int | None = Field(default=None, ge=0)  # noqa: N815


class TankFillPayload(_PayloadBase):
    """On-site tank filling."""

    tankId: str = Field(min_length=1)  # noqa: N815
    tankLevel: float = Field(ge=0, le=100, description="Percent before filling")  # noqa: N815
    tankLevelAfter: float | None = Field(default=None, ge=0, le=100)  # noqa: N815
    capacity: float | None = Field(default=None, gt=0, description="Litres")
    productType: str | None = None  # noqa: N815


PAYLOAD_SCHEMAS: dict[InterventionType, type[_PayloadBase]] = {
    InterventionType.WASHING: WashingPayload,
    InterventionType.FUEL_DELIVERY: FuelDeliveryPayload,
    InterventionType.TANK_FILL: TankFillPayload,
}

InterventionPayload = WashingPayload | FuelDeliveryPayload | TankFillPayload


def validate_payload(
    intervention_type: InterventionType | str,
    payload: dict[str, Any],
) -> InterventionPayload:
    """Validate *payload* against the schema for *intervention_type*.

    Raises:
        InvalidArgumentError: On an unknown type or a payload that does
            not satisfy the schema.
    """
    try:
        kind = InterventionType(intervention_type)
    except ValueError as exc:
        msg = f"unknown intervention type: {intervention_type!r}"
        raise InvalidArgumentError(msg) from exc

    schema = PAYLOAD_SCHEMAS[kind]
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        msg = f"invalid {kind.value} payload: {problems}"
        raise InvalidArgumentError(msg) from exc


def is_complete(intervention_type: InterventionType | str, payload: dict[str, Any]) -> bool:
    """Whether *payload* passes :func:`validate_payload`."""
    try:
        validate_payload(intervention_type, payload)
    except InvalidArgumentError:
        return False
    return True
