"""
HTTP routes for the crow backend API.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from crowbackend.config import Settings
from crowbackend.crowmail import CrowmailService
from crowbackend.crows import (
    DEFAULT_CREDIT_LINK,
    DEFAULT_CREDIT_NAME,
    DEFAULT_CROW_NAME,
    CrowService,
)
from crowbackend.db import CrowRecord
from crowbackend.dependencies import (
    get_app_settings,
    get_crow_service,
    get_crowmail_service,
)
from crowbackend.errors import UnauthorizedError
from crowbackend.names import is_valid_name
from crowbackend.schemas import (
    CrowResponse,
    NameResponse,
    NamesRequest,
    NameVoteRequest,
    NewNameRequest,
    PasswordRequest,
    RateRequest,
    SubscribeRequest,
    UnsubscribeRequest,
    UploadRequest,
    UploadResponse,
    ValidateNameRequest,
    ValidateNameResponse,
)

router = APIRouter()


def _crow_response(crow: CrowRecord) -> CrowResponse:
    return CrowResponse(**crow.as_dict())


@router.post("/validate-password", response_class=PlainTextResponse)
def validate_password(
    payload: PasswordRequest, settings: Settings = Depends(get_app_settings)
):
    expected = settings.upload_pass
    if not expected or not hmac.compare_digest(
        payload.password.encode("utf-8"), expected.encode("utf-8")
    ):
        raise UnauthorizedError("Unauthorized: Incorrect password")
    return "Password validated successfully"


@router.get("/random", response_model=CrowResponse)
def random_crow(crows: CrowService = Depends(get_crow_service)):
    return _crow_response(crows.random_crow())


@router.post("/rate", response_class=PlainTextResponse)
def rate(payload: RateRequest, crows: CrowService = Depends(get_crow_service)):
    crows.submit_rating(payload.crow_id, payload.rating)
    return "Rating updated successfully"


@router.post("/upload", response_model=UploadResponse)
def upload(payload: UploadRequest, crows: CrowService = Depends(get_crow_service)):
    crow = crows.create_crow(
        payload.img_url,
        credit_name=payload.credit_name,
        credit_link=payload.credit_link,
    )
    return UploadResponse(
        crow_id=crow.crow_id,
        img_url=crow.img_url,
        credit_name=crow.credit_name,
        credit_link=crow.credit_link,
    )


@router.get("/leaderboard", response_model=list[CrowResponse])
def leaderboard(crows: CrowService = Depends(get_crow_service)):
    return [_crow_response(crow) for crow in crows.list_top_fraction()]


@router.get("/all-crows", response_model=list[CrowResponse])
def all_crows(crows: CrowService = Depends(get_crow_service)):
    return [_crow_response(crow) for crow in crows.list_all()]


@router.get("/crow/{crow_id}", response_model=CrowResponse)
def get_crow(crow_id: str, crows: CrowService = Depends(get_crow_service)):
    crow = crows.get_crow(crow_id)
    return CrowResponse(
        crow_id=crow.crow_id,
        img_url=crow.img_url,
        avg_rating=crow.avg_rating,
        rating_count=crow.rating_count,
        credit_name=crow.credit_name or DEFAULT_CREDIT_NAME,
        credit_link=crow.credit_link or DEFAULT_CREDIT_LINK,
        name=crow.name or DEFAULT_CROW_NAME,
    )


@router.post("/new-name", response_class=PlainTextResponse, status_code=201)
def new_name(payload: NewNameRequest, crows: CrowService = Depends(get_crow_service)):
    crows.add_name_proposal(payload.crow_id, payload.name)
    return "Name added successfully"


@router.post("/name-vote", response_class=PlainTextResponse)
def name_vote(
    payload: NameVoteRequest, crows: CrowService = Depends(get_crow_service)
):
    crows.vote_name(payload.crow_id, payload.name_id, payload.vote_type)
    return "Vote added successfully"


@router.post("/names", response_model=list[NameResponse])
def names(payload: NamesRequest, crows: CrowService = Depends(get_crow_service)):
    return [NameResponse(**n.as_dict()) for n in crows.list_names(payload.crow_id)]


@router.post("/validate-name", response_model=ValidateNameResponse)
def validate_name(payload: ValidateNameRequest):
    return ValidateNameResponse(valid=is_valid_name(payload.name))


@router.post("/crowmail/subscribe", response_class=PlainTextResponse)
def subscribe(
    payload: SubscribeRequest,
    crowmail: CrowmailService = Depends(get_crowmail_service),
):
    crowmail.subscribe(payload.email, payload.type)
    return "Verification email sent"


@router.get("/crowmail/verify", response_class=PlainTextResponse)
def verify(
    key: Optional[str] = Query(None),
    crowmail: CrowmailService = Depends(get_crowmail_service),
):
    crowmail.verify(key)
    return "Email verified successfully"


@router.post("/crowmail/unsubscribe", response_class=PlainTextResponse)
def unsubscribe(
    payload: UnsubscribeRequest,
    crowmail: CrowmailService = Depends(get_crowmail_service),
):
    crowmail.unsubscribe(payload.user_id)
    return "Unsubscribed successfully"


@router.get("/health", response_class=PlainTextResponse)
def health():
    return "OK"
