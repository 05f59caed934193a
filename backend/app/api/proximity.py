"""REST API surface for proximity features."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.domain.geo.geodesy import Coordinate
from app.domain.proximity.fetcher import RadiusOutOfRange, filter_by_radius, validate_radius
from app.domain.proximity.schemas import LocationAck, LocationPayload, NearbyResponse, NearbyUserOut
from app.domain.proximity.sessions import get_registry
from app.domain.proximity.store import ProfileStoreError
from app.infra.auth import AuthenticatedUser, get_current_user
from app.obs import metrics as obs_metrics

router = APIRouter()


@router.get("/nearby", response_model=NearbyResponse)
async def nearby(
    refresh: bool = Query(default=False),
    radius_km: Optional[float] = Query(default=None),
    auth_user: AuthenticatedUser = Depends(get_current_user),
) -> NearbyResponse:
    try:
        radius = validate_radius(radius_km)
    except RadiusOutOfRange as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc)) from exc

    session = get_registry().session_for(auth_user.id)
    outcome = await session.fetcher.refresh(user_initiated=refresh)
    users = session.fetcher.users
    in_range = filter_by_radius(users, radius)
    return NearbyResponse(
        items=[NearbyUserOut.from_user(user) for user in users],
        in_range=[user.id for user in in_range],
        radius_km=radius,
        outcome=outcome.value,
    )


@router.post("/location", response_model=LocationAck)
async def update_location(
    payload: LocationPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
) -> LocationAck:
    registry = get_registry()
    coord = Coordinate(lat=payload.lat, lng=payload.lng)
    try:
        await registry.store.update_location(
            auth_user.id, coord, hide_exact_location=payload.hide_exact_location
        )
    except ProfileStoreError as exc:
        obs_metrics.inc_location_write("api", "failed")
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "location_write_failed") from exc
    obs_metrics.inc_location_write("api", "ok")
    registry.session_for(auth_user.id).fetcher.set_viewer_location(coord)
    return LocationAck(lat=coord.lat, lng=coord.lng)


@router.post("/presence/offline", status_code=status.HTTP_202_ACCEPTED)
async def presence_offline(
    auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Response:
    """Unload beacon: schedules the offline write and answers immediately."""
    get_registry().store.update_online_status_best_effort(auth_user.id, False)
    return Response(status_code=status.HTTP_202_ACCEPTED)
