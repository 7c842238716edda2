"""
Pydantic schemas for the crow backend.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr


class PasswordRequest(BaseModel):
    password: str


class RateRequest(BaseModel):
    crow_id: str = Field(..., min_length=1)
    # Strict members keep JSON booleans from being coerced to 1.0 / 0.0.
    rating: Union[StrictFloat, StrictInt, StrictStr]


class UploadRequest(BaseModel):
    img_url: str = Field(..., min_length=1)
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None


class UploadResponse(BaseModel):
    crow_id: str
    img_url: str
    credit_name: str
    credit_link: str


class CrowResponse(BaseModel):
    crow_id: str
    img_url: str
    avg_rating: float
    rating_count: int
    credit_name: Optional[str] = None
    credit_link: Optional[str] = None
    name: Optional[str] = None


class NewNameRequest(BaseModel):
    crow_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=256)


class NameVoteRequest(BaseModel):
    crow_id: str = Field(..., min_length=1)
    name_id: str = Field(..., min_length=1)
    vote_type: str = Field(..., min_length=1)


class NamesRequest(BaseModel):
    crow_id: str = Field(..., min_length=1)


class NameResponse(BaseModel):
    name_id: str
    name: str
    upvotes: int
    downvotes: int


class ValidateNameRequest(BaseModel):
    name: str = ""


class ValidateNameResponse(BaseModel):
    valid: bool


class SubscribeRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    type: str = Field(..., min_length=1, max_length=64)


class UnsubscribeRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
