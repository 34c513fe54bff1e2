"""FastAPI routes for rooms."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from wordparty.domain.rooms import policy, schemas
from wordparty.domain.rooms.service import RoomService
from wordparty.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/rooms", tags=["rooms"])

_room_service = RoomService()


def _as_http_error(exc: policy.RoomPolicyError) -> HTTPException:
	return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.post("/create", response_model=schemas.RoomSummary, status_code=status.HTTP_201_CREATED)
async def create_room_endpoint(auth_user: AuthenticatedUser = Depends(get_current_user)) -> schemas.RoomSummary:
	try:
		return await _room_service.create_room(auth_user)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/join/by-code", response_model=schemas.RoomSummary)
async def join_by_code_endpoint(
	payload: schemas.JoinByCodeRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomSummary:
	try:
		return await _room_service.join_by_code(auth_user, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{room_id}/leave", status_code=status.HTTP_200_OK)
async def leave_room_endpoint(
	room_id: str,
	quiet: bool = False,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	if quiet:
		await _room_service.leave_room_quietly(auth_user, room_id)
		return {"ok": True}
	try:
		await _room_service.leave_room(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}


@router.get("/my", response_model=List[schemas.RoomSummary])
async def my_rooms_endpoint(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[schemas.RoomSummary]:
	return await _room_service.list_my_rooms(auth_user)


@router.get("/code/{room_code}", response_model=schemas.RoomDetail)
async def room_by_code_endpoint(
	room_code: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomDetail:
	try:
		return await _room_service.get_room_by_code(auth_user, room_code)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
