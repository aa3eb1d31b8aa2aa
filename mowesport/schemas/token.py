"""
JWT claim records.

Access and refresh tokens carry different claim sets and are told apart by
the "type" discriminator. Decoding always names the expected record, so a
refresh token can never be replayed as an access token or the other way round.
"""

import uuid
from typing import Literal

from pydantic import BaseModel


class AccessClaims(BaseModel):
    user_id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    primary_role: str
    type: Literal["access"] = "access"
    exp: int
    iat: int


class RefreshClaims(BaseModel):
    user_id: uuid.UUID
    type: Literal["refresh"] = "refresh"
    exp: int
    iat: int
