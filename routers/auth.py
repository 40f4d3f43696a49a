from fastapi import APIRouter, Depends
from redis import RedisError

from auth import Identity, hash_password, issue_token, verify_password
from backend import RedisBackend, UsernameTaken, get_backend
from errors import InternalError, Unauthenticated, ValidationError
from schemas.auth import CredentialsRequest, TokenResponse
from schemas.rooms import UserSummary
from logging_config import get_logger

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 6


def _require_credentials(credentials: CredentialsRequest):
    username = (credentials.username or "").strip()
    password = credentials.password or ""
    if not username or not password:
        raise ValidationError("Username and password are required")
    return username, password


def _token_response(user: dict) -> TokenResponse:
    identity = Identity(user_id=user["id"], username=user["username"])
    return TokenResponse(
        token=issue_token(identity),
        user=UserSummary(id=identity.user_id, username=identity.username),
    )


@auth_router.post("/register", status_code=201, response_model=TokenResponse)
def register(credentials: CredentialsRequest, backend: RedisBackend = Depends(get_backend)):
    username, password = _require_credentials(credentials)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    try:
        user = backend.create_user(username, hash_password(password))
    except UsernameTaken:
        logger.warning(f"Registration failed: username {username} already taken")
        raise ValidationError("Username already taken")
    except RedisError as e:
        logger.error(f"Error registering user {username}: {e}", exc_info=True)
        raise InternalError("Server error") from e
    return _token_response(user)


@auth_router.post("/login", response_model=TokenResponse)
def login(credentials: CredentialsRequest, backend: RedisBackend = Depends(get_backend)):
    username, password = _require_credentials(credentials)
    try:
        user = backend.get_user_by_username(username)
    except RedisError as e:
        logger.error(f"Error loading user {username}: {e}", exc_info=True)
        raise InternalError("Server error") from e

    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.warning(f"Login failed for username {username}")
        raise Unauthenticated("Invalid credentials")
    logger.info(f"User {user['id']} logged in")
    return _token_response(user)
