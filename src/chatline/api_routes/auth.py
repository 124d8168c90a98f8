"""Registration and login endpoints."""

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel

from chatline import api_state as state
from chatline.api_errors import ErrorResponse
from chatline.config import get_settings
from chatline.errors import AuthError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_rate_limit() -> str:
    return get_settings().rate_limit_auth


class CredentialsRequest(BaseModel):
    """Email/password pair."""

    email: str = ""
    password: str = ""


class RegisterResponse(BaseModel):
    message: str
    userId: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post(
    "/register",
    status_code=201,
    response_model=RegisterResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Email already registered"},
    },
)
@state.limiter.limit(_auth_rate_limit)
def register(request: Request, body: CredentialsRequest) -> RegisterResponse:
    """Create a new user account."""
    user_id = state.get_components().users.register(body.email, body.password)
    return RegisterResponse(message="User created successfully", userId=user_id)


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@state.limiter.limit(_auth_rate_limit)
def login(request: Request, body: CredentialsRequest) -> TokenResponse:
    """Exchange credentials for a bearer token."""
    components = state.get_components()
    user_id = components.users.authenticate(body.email, body.password)
    if user_id is None:
        raise AuthError("Invalid email or password")
    token = components.validator.issue(user_id)
    return TokenResponse(
        access_token=token,
        expires_in=components.validator.expires_minutes * 60,
    )
