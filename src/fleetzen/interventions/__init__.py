"""Intervention boundary helpers — payload schemas and photo compression."""

from __future__ import annotations

from fleetzen.interventions.payloads import (
    PAYLOAD_SCHEMAS,
    FuelDeliveryPayload,
    TankFillPayload,
    WashingPayload,
    is_complete,
    validate_payload,
)
from fleetzen.interventions.photos import CompressedPhoto, compress_photo

__all__ = [
    "PAYLOAD_SCHEMAS",
    "CompressedPhoto",
    "FuelDeliveryPayload",
    "TankFillPayload",
    "WashingPayload",
    "compress_photo",
    "is_complete",
    "validate_payload",
]
