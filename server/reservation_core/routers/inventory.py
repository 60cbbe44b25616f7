"""Inventory router for room types and availability."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.dependencies import ClockDependency, CurrentActor, DatabaseSession, require_roles
from ..core.exceptions import ValidationError
from ..schemas.common import Actor, ActorRole
from ..schemas.inventory import Availability, CreateRoomTypeRequest, RoomType
from ..services.inventory_service import InventoryService
from .converters import convert_room_type

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/inventory", tags=["inventory"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = DatabaseSession
ACTOR_DEPENDENCY = CurrentActor
ADMIN_DEPENDENCY = Depends(require_roles(ActorRole.ADMIN, ActorRole.SUPERADMIN))
CLOCK_DEPENDENCY = ClockDependency
ROOM_TYPE_QUERY = Query(..., description="Room type ID")
CHECK_IN_QUERY = Query(..., description="First night (inclusive)")
CHECK_OUT_QUERY = Query(..., description="Departure day (exclusive)")


@router.post("/room-type", response_model=RoomType)
async def create_room_type(
    request: CreateRoomTypeRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ADMIN_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """Register a room type. Requires ADMIN or SUPERADMIN."""
    room_type = await InventoryService(db, clock).create_room_type(request, actor)
    response_data = convert_room_type(room_type)
    return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))


@router.get("/room-types", response_model=list[RoomType])
async def list_room_types(
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    room_types = await InventoryService(db, clock).list_room_types()
    return JSONResponse(
        status_code=200,
        content=[convert_room_type(room_type).model_dump(mode="json") for room_type in room_types],
    )


@router.get("/availability", response_model=Availability)
async def get_availability(
    room_type_id: str = ROOM_TYPE_QUERY,
    check_in: date = CHECK_IN_QUERY,
    check_out: date = CHECK_OUT_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = ACTOR_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Rooms of a type that can still be held for every night of a range.

    Committed holds and active holds whose lease has not run out count as
    reserved.
    """
    if check_in >= check_out:
        raise ValidationError(
            detail="check_in must be before check_out",
            violations=[{"path": "check_out", "message": "must be after check_in"}],
        )

    availability = await InventoryService(db, clock).availability(room_type_id, check_in, check_out)
    response_data = Availability(**availability)

    logger.debug(
        "Availability computed",
        extra={
            "room_type_id": room_type_id,
            "check_in": check_in.isoformat(),
            "check_out": check_out.isoformat(),
            "available_quantity": response_data.available_quantity,
        }
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
