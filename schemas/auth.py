from pydantic import BaseModel
from typing import Optional

from schemas.rooms import UserSummary


class CredentialsRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

class TokenResponse(BaseModel):
    token: str
    user: UserSummary
