"""HTTP route definitions for the profile service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from profile_schemas import AccountView

from ..domain.account import Account, Profile
from ..domain.contracts import ProfileUpdate
from ..domain.errors import (
    DuplicateEmail,
    InvalidCredentials,
    NotFound,
    ProfileServiceError,
    StorageUnavailable,
    TokenError,
    ValidationError,
)
from ..domain.service import AuthService, TokenBundle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/profiles")

bearer_scheme = HTTPBearer(auto_error=False)


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while keeping snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class RegisterRequest(CamelModel):
    """Registration payload; presence of each field is checked by the service."""

    email: str | None = None
    password: str | None = None
    name: str | None = None
    phone: str | None = None
    postal_code: str | None = None
    region: str | None = None
    address: str | None = None
    image_url: str | None = None


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None


class RefreshRequest(CamelModel):
    refresh_token: str


class UpdateProfileRequest(CamelModel):
    """Partial profile change; keys outside the profile are ignored."""

    name: str | None = None
    phone: str | None = None
    postal_code: str | None = None
    region: str | None = None
    address: str | None = None
    image_url: str | None = None


class MessageResponse(CamelModel):
    message: str


class RegisterResponse(MessageResponse):
    user: AccountView


class TokenResponse(MessageResponse):
    """Token issuance response containing the bearer tokens and their lifetimes."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int


class LoginResponse(TokenResponse):
    user: AccountView


class UpdateProfileResponse(MessageResponse):
    updated: AccountView


def account_view(account: Account) -> AccountView:
    """Project the domain aggregate onto its public view."""
    profile = account.profile
    return AccountView(
        id=account.account_id,
        email=account.email,
        role=account.role.value,
        name=profile.name,
        phone=profile.phone,
        postal_code=profile.postal_code,
        region=profile.region,
        address=profile.address,
        image_url=profile.image_url,
        created_at=account.created_at,
    )


def _token_fields(bundle: TokenBundle) -> dict[str, object]:
    return {
        "access_token": bundle.access_token,
        "expires_in": bundle.access_expires_in,
        "refresh_token": bundle.refresh_token,
        "refresh_expires_in": bundle.refresh_expires_in,
    }


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_service),
) -> str:
    """Return the subject of the bearer access token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return service.authenticate(credentials.credentials)
    except TokenError as exc:
        raise _http_error(exc) from exc


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_service),
) -> RegisterResponse:
    """Create an account from the submitted credentials and profile."""
    profile = Profile(
        name=payload.name or "",
        phone=payload.phone or "",
        postal_code=payload.postal_code or "",
        region=payload.region or "",
        address=payload.address or "",
        image_url=payload.image_url,
    )
    try:
        account = service.register(payload.email or "", payload.password or "", profile)
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return RegisterResponse(message="User registered successfully", user=account_view(account))


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    service: AuthService = Depends(get_service),
) -> LoginResponse:
    """Authenticate and issue an access/refresh token pair."""
    try:
        result = service.login(payload.email or "", payload.password or "")
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return LoginResponse(
        message="Login successful",
        user=account_view(result.account),
        **_token_fields(result.tokens),
    )


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    payload: RefreshRequest,
    service: AuthService = Depends(get_service),
) -> TokenResponse:
    """Exchange a refresh token for a new access token."""
    try:
        bundle = service.refresh(payload.refresh_token)
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return TokenResponse(message="Token refreshed", **_token_fields(bundle))


@router.post("/logout", response_model=MessageResponse)
def logout(
    account_id: str = Depends(get_current_account_id),
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    """Revoke the caller's session."""
    try:
        service.logout(account_id)
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="Logged out")


# The path id is trusted as-is; an ownership gate, if any, lives in front of this service.
@router.put("/update/{account_id}", response_model=UpdateProfileResponse)
def update_profile(
    account_id: str,
    payload: UpdateProfileRequest,
    service: AuthService = Depends(get_service),
) -> UpdateProfileResponse:
    """Apply a partial profile update."""
    update = ProfileUpdate.from_mapping(payload.model_dump())
    try:
        account = service.update_profile(account_id, update)
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return UpdateProfileResponse(message="Profile updated", updated=account_view(account))


@router.get("/{account_id}", response_model=AccountView)
def get_account(
    account_id: str,
    service: AuthService = Depends(get_service),
) -> AccountView:
    """Retrieve a single account."""
    try:
        account = service.get_account(account_id)
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return account_view(account)


@router.get("/", response_model=list[AccountView])
def list_accounts(service: AuthService = Depends(get_service)) -> list[AccountView]:
    """Return every registered account."""
    try:
        accounts = service.list_accounts()
    except ProfileServiceError as exc:
        raise _http_error(exc) from exc
    return [account_view(account) for account in accounts]


def _http_error(exc: ProfileServiceError) -> HTTPException:
    if isinstance(exc, (ValidationError, DuplicateEmail, InvalidCredentials)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, TokenError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, StorageUnavailable):
        logger.warning("request failed: %s", exc.message)
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    logger.error("unmapped profile service error: %r", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")
