from fastapi import APIRouter, Depends
from redis import RedisError

from auth import Identity, get_current_identity
from backend import RedisBackend, get_backend
from errors import InternalError, ValidationError
from schemas.rooms import CreateRoomRequest, RoomDetailsResponse, RoomResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.post("/create", status_code=201, response_model=RoomResponse)
def create_room(
    room: CreateRoomRequest,
    identity: Identity = Depends(get_current_identity),
    backend: RedisBackend = Depends(get_backend),
):
    name = room.name.strip() if room.name else ""
    if not name:
        raise ValidationError("Room name is required")

    logger.info(f"Room creation request from user {identity.user_id}, name: {name}")
    try:
        created = backend.create_room(name, identity.user_id)
    except RedisError as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise InternalError("Server error") from e
    return RoomResponse(**created)


@rooms_router.get("", response_model=list[RoomDetailsResponse])
def list_rooms(backend: RedisBackend = Depends(get_backend)):
    try:
        rooms = backend.list_rooms()
    except RedisError as e:
        logger.error(f"Error listing rooms: {e}", exc_info=True)
        raise InternalError("Server error") from e
    return [RoomDetailsResponse(**room) for room in rooms]
