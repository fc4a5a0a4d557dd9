"""
users.py
--------
Purpose:
    Account endpoints: signup, login (password and OAuth), profile, password
    reset, email verification and user search.

Usage:
    1. POST /users          - Password signup
    2. POST /users/auth     - Password login
    3. POST /users/oauth    - Google/Facebook login or signup
    4. GET/PATCH /users     - Current user
    5. POST /users/forgot   - Email a password reset link
    6. POST /users/password - Set a password from a reset link
    7. POST /users/verify   - Verify an email from a verification link
    8. POST /users/resend   - Resend the verification email
    9. GET /users/search    - Search registered users by name
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.verify import auth_dependency, optional_user
from app.db import keys
from app.dependencies import Clients, get_clients
from app.errors import ConflictError, NotFoundError, UnauthorizedError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.api.user_request import (
    ForgotPasswordRequest,
    LoginRequest,
    OAuthLoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdateUserRequest,
    VerifyEmailRequest,
)
from app.models.api.user_response import (
    AckResponse,
    UserPartialResponse,
    UserResponse,
    UsersResponse,
)
from app.models.domain.user_domain import User
from app.services import merge_service, user_service
from app.services.email_queue import EmailPayload

router = APIRouter(prefix="/users", tags=["users"])
logger = get_logger(__name__)


def _me(clients: Clients, user: User) -> UserResponse:
    return UserResponse.from_user(user, clients.notifications.realtime_token(user.id))


async def _enqueue_welcome(clients: Clients, user: User) -> None:
    try:
        await clients.queue.put_email(EmailPayload(type="User", action="SendWelcome", ids=[user.id]))
    except Exception as e:
        log_alarm(e, op="users.enqueue_welcome", user_id=user.id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(request: SignupRequest, clients: Clients = Depends(get_clients)):
    user = await user_service.register_with_password(
        clients.store,
        request.email,
        request.first_name,
        request.last_name,
        request.password,
        clients.search,
    )
    await clients.mail.send_verify_email(user)
    await _enqueue_welcome(clients, user)
    return _me(clients, user)


@router.post("/auth", response_model=UserResponse)
async def login(request: LoginRequest, clients: Clients = Depends(get_clients)):
    user = await user_service.login_with_password(clients.store, request.email, request.password)
    return _me(clients, user)


@router.post("/oauth", response_model=UserResponse)
async def oauth_login(
    request: OAuthLoginRequest,
    clients: Clients = Depends(get_clients),
    token_user: User | None = Depends(optional_user),
):
    """
    Log in or sign up with a provider token.

    When the request also carries the session token of an account created
    by an email invitation, that account is merged into the OAuth account.
    """
    payload = await clients.oauth.verify(request.provider, request.token)
    user, created = await user_service.login_with_oauth(clients.store, payload, clients.search)

    mergeable = token_user is not None and not token_user.is_registered
    if mergeable and not keys.equal(token_user.key, user.key):
        await merge_service.merge(clients.store, clients.locks, token_user, user, clients.search)
        logger.info("Merged invited account on OAuth login", old_user_id=token_user.id, user_id=user.id)

    if created:
        await _enqueue_welcome(clients, user)
    return _me(clients, user)


@router.get("", response_model=UserResponse)
async def get_me(user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)):
    return _me(clients, user)


@router.patch("", response_model=UserResponse)
async def update_me(
    request: UpdateUserRequest,
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    changes = request.model_dump(exclude_none=True)
    for field_name, value in changes.items():
        setattr(user, field_name, value.strip() if isinstance(value, str) else value)
    await user_service.commit(clients.store, user, clients.search)
    logger.info("User updated", user_id=user.id, fields=sorted(changes))
    return _me(clients, user)


@router.post("/forgot", response_model=AckResponse)
async def forgot_password(request: ForgotPasswordRequest, clients: Clients = Depends(get_clients)):
    """Always succeeds so the endpoint cannot be used to discover accounts."""
    user = await user_service.get_user_by_email(clients.store, request.email)
    if user is not None:
        await clients.mail.send_password_reset(user)
    return AckResponse(message="Check your email for a link to set your password")


@router.post("/password", response_model=UserResponse)
async def reset_password(request: ResetPasswordRequest, clients: Clients = Depends(get_clients)):
    try:
        user = await user_service.get_user_by_id(clients.store, request.user_id)
    except NotFoundError:
        raise UnauthorizedError("Invalid link", op="users.reset_password") from None

    user.verify_password_reset_magic_link(clients.magic, request.timestamp, request.signature)
    user.change_password(request.password)
    # Receiving the link proves the address
    user.verified = True
    await user_service.commit(clients.store, user, clients.search)
    return _me(clients, user)


@router.post("/verify", response_model=UserResponse)
async def verify_email(request: VerifyEmailRequest, clients: Clients = Depends(get_clients)):
    try:
        user = await user_service.get_user_by_id(clients.store, request.user_id)
    except NotFoundError:
        raise UnauthorizedError("Invalid link", op="users.verify_email") from None

    if not user.verified:
        user.verify_email_magic_link(clients.magic, request.timestamp, request.signature)
        user.verified = True
        await user_service.commit(clients.store, user, clients.search)
    return _me(clients, user)


@router.post("/resend", response_model=AckResponse)
async def resend_verification(
    user: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    if user.verified:
        raise ConflictError(
            "Your email is already verified",
            op="users.resend_verification",
            messages={"message": "Your email is already verified"},
        )
    await clients.mail.send_verify_email(user)
    return AckResponse(message="Verification email sent")


@router.get("/search", response_model=UsersResponse)
async def search_users(
    query: str = Query(..., min_length=1, max_length=255),
    user: User = Depends(auth_dependency),
    clients: Clients = Depends(get_clients),
):
    results = await clients.search.search_users(query)
    return UsersResponse(
        users=[UserPartialResponse.from_partial(p) for p in results if p.id != user.id]
    )


@router.get("/{user_id}", response_model=UserPartialResponse)
async def get_user(
    user_id: str, _: User = Depends(auth_dependency), clients: Clients = Depends(get_clients)
):
    other = await user_service.get_user_by_id(clients.store, user_id)
    return UserPartialResponse.from_partial(other.to_partial())
