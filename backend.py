import json
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import Request

from constants import REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT, STORAGE_RETRY_DELAY_SECONDS
from redis_keys import REDIS_ROOM_KEY, REDIS_ROOMS_INDEX, REDIS_USER_KEY, REDIS_USERNAME_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class UsernameTaken(Exception):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RedisBackend:
    """Users and rooms stored as Redis hashes.

    The client is created lazily by redis-py, so constructing the backend does
    not touch the network; call ``connect`` once at startup.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                decode_responses=True,
            )
        self.redis_client = redis_client

    def connect(self, retry_delay: float = STORAGE_RETRY_DELAY_SECONDS, max_attempts: Optional[int] = None) -> int:
        """Block until Redis answers a PING, retrying on a fixed delay.

        Retries forever unless ``max_attempts`` is given. Returns the number of
        attempts it took.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                self.redis_client.ping()
                logger.info(f"Connected to Redis at {REDIS_HOST}:{REDIS_PORT} (attempt {attempt})")
                return attempt
            except redis.RedisError as e:
                logger.error(f"Redis connection attempt {attempt} failed: {e}")
                if max_attempts is not None and attempt >= max_attempts:
                    raise
                time.sleep(retry_delay)

    def create_user(self, username: str, password_hash: str) -> dict:
        user_id = uuid.uuid4().hex
        name_key = REDIS_USERNAME_KEY.format(username=username.lower())
        # SETNX keeps usernames unique under concurrent registrations
        if not self.redis_client.set(name_key, user_id, nx=True):
            raise UsernameTaken(username)

        user = {
            "id": user_id,
            "username": username,
            "password_hash": password_hash,
            "created_at": _now_iso(),
        }
        try:
            self.redis_client.hset(REDIS_USER_KEY.format(user_id=user_id), mapping=user)
        except redis.RedisError:
            # Release the name so the user can register again
            logger.error(f"Failed to store user {user_id} ({username}), releasing username", exc_info=True)
            self.redis_client.delete(name_key)
            raise
        logger.info(f"Created user {user_id} ({username})")
        return user

    def get_user(self, user_id: str) -> Optional[dict]:
        user = self.redis_client.hgetall(REDIS_USER_KEY.format(user_id=user_id))
        return user or None

    def get_user_by_username(self, username: str) -> Optional[dict]:
        user_id = self.redis_client.get(REDIS_USERNAME_KEY.format(username=username.lower()))
        if not user_id:
            return None
        return self.get_user(user_id)

    def create_room(self, name: str, created_by: str) -> dict:
        room_id = uuid.uuid4().hex
        created_at = _now_iso()
        room = {
            "id": room_id,
            "name": name,
            "created_by": created_by,
            "members": [created_by],
            "created_at": created_at,
        }
        key = REDIS_ROOM_KEY.format(room_id=room_id)
        pipe = self.redis_client.pipeline()
        pipe.hset(key, mapping={**room, "members": json.dumps(room["members"])})
        pipe.zadd(REDIS_ROOMS_INDEX, {room_id: time.time()})
        pipe.execute()
        logger.info(f"Room {room_id} created: name={name}, created_by={created_by}")
        return room

    def get_room(self, room_id: str) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_ROOM_KEY.format(room_id=room_id))
        if not data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        try:
            data["members"] = json.loads(data.get("members") or "[]")
        except json.JSONDecodeError:
            logger.warning(f"Room {room_id} has unreadable members field")
            data["members"] = []
        return data

    def list_rooms(self) -> list:
        """All rooms, oldest first, with creator and members resolved to users."""
        room_ids = self.redis_client.zrange(REDIS_ROOMS_INDEX, 0, -1)
        users = {}

        def resolve(user_id):
            if user_id not in users:
                user = self.get_user(user_id)
                users[user_id] = {"id": user_id, "username": user["username"]} if user else None
            return users[user_id]

        rooms = []
        for room_id in room_ids:
            room = self.get_room(room_id)
            if room is None:
                continue
            room["created_by"] = resolve(room.get("created_by"))
            room["members"] = [m for m in (resolve(uid) for uid in room["members"]) if m is not None]
            rooms.append(room)
        logger.debug(f"Listed {len(rooms)} rooms")
        return rooms


def get_backend(request: Request) -> RedisBackend:
    """Dependency returning the backend the running app was created with."""
    return request.app.state.backend


redis_backend = RedisBackend()
