"""
Disaster endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import EconomySystem, Principal, get_economy_system, get_principal, require_teacher
from .errors import http_error
from .schemas import (
    CreateDisasterRequest,
    TriggerDisasterRequest,
    UpdateDisasterRequest,
    disaster_event_response,
    disaster_response,
)
from ..errors import EconomyError


router = APIRouter()


@router.get("")
def list_disasters(
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    return [disaster_response(d) for d in system.disaster_manager.list_disasters()]


@router.get("/events/recent")
def recent_events(
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    return [disaster_event_response(e) for e in system.disaster_manager.recent_events()]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_disaster(
    request: CreateDisasterRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        disaster = system.disaster_manager.create_disaster(
            created_by=principal.user_id, **request.model_dump()
        )
        return disaster_response(disaster)
    except EconomyError as e:
        raise http_error(e)


@router.put("/{disaster_id}")
def update_disaster(
    disaster_id: str,
    request: UpdateDisasterRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        disaster = system.disaster_manager.update_disaster(
            disaster_id, updated_by=principal.user_id, **request.model_dump(exclude_unset=True)
        )
        return disaster_response(disaster)
    except EconomyError as e:
        raise http_error(e)


@router.put("/{disaster_id}/toggle")
def toggle_disaster(
    disaster_id: str,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        return disaster_response(system.disaster_manager.toggle_disaster(disaster_id, updated_by=principal.user_id))
    except EconomyError as e:
        raise http_error(e)


@router.delete("/{disaster_id}")
def delete_disaster(
    disaster_id: str,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        system.disaster_manager.delete_disaster(disaster_id, deleted_by=principal.user_id)
    except EconomyError as e:
        raise http_error(e)
    return {"message": "Disaster deleted successfully"}


@router.post("/{disaster_id}/trigger")
def trigger_disaster(
    disaster_id: str,
    request: TriggerDisasterRequest,
    principal: Principal = Depends(require_teacher),
    system: EconomySystem = Depends(get_economy_system)
):
    """Apply the disaster to every student in scope"""
    try:
        event = system.disaster_manager.trigger_disaster(
            disaster_id, notes=request.notes, target_class=request.target_class,
            triggered_by=principal.user_id
        )
    except EconomyError as e:
        raise http_error(e)
    response = disaster_event_response(event)
    response["message"] = f'Disaster "{event.disaster_name}" triggered successfully'
    return response
