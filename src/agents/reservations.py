"""Table reservation functions offered to the model."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from agents.tools import ToolRegistry, ToolSpec


class AvailabilityQuery(BaseModel):
    date: str = Field(min_length=1)
    time: str = Field(min_length=1)
    guests: int = Field(ge=1)


class ReservationRequest(AvailabilityQuery):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)


CHECK_AVAILABILITY = ToolSpec(
    name="checkAvailability",
    description="Check whether a table is free for the requested date, time and party size.",
    parameters={
        "type": "object",
        "properties": {
            "date": {"type": "string", "description": "Reservation date (YYYY-MM-DD)"},
            "time": {"type": "string", "description": "Reservation time (HH:MM)"},
            "guests": {"type": "integer", "description": "Number of guests"},
        },
        "required": ["date", "time", "guests"],
    },
)

CREATE_RESERVATION = ToolSpec(
    name="createReservation",
    description="Book a table for the caller.",
    parameters={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Guest name"},
            "phone": {"type": "string", "description": "Guest phone number"},
            "date": {"type": "string", "description": "Reservation date (YYYY-MM-DD)"},
            "time": {"type": "string", "description": "Reservation time (HH:MM)"},
            "guests": {"type": "integer", "description": "Number of guests"},
        },
        "required": ["name", "phone", "date", "time", "guests"],
    },
)


def _validation_error(exc: ValidationError) -> dict[str, Any]:
    fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
    return {"error": f"Invalid or missing fields: {', '.join(fields)}"}


def check_availability(args: dict[str, Any]) -> dict[str, Any]:
    try:
        query = AvailabilityQuery.model_validate(args)
    except ValidationError as exc:
        return _validation_error(exc)

    return {
        "available": True,
        "message": f"A table for {query.guests} is available at {query.time} on {query.date}.",
    }


def create_reservation(args: dict[str, Any]) -> dict[str, Any]:
    try:
        request = ReservationRequest.model_validate(args)
    except ValidationError as exc:
        return _validation_error(exc)

    return {
        "success": True,
        "reservationId": f"RES{int(time.time() * 1000)}",
        "message": f"Reservation confirmed for {request.name}.",
    }


def register_reservation_tools(registry: ToolRegistry) -> ToolRegistry:
    registry.register(CHECK_AVAILABILITY, check_availability)
    registry.register(CREATE_RESERVATION, create_reservation)
    return registry
