"""Authentication endpoints: register, login, me, logout."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user, get_settings
from bargenix.models import AuthCredential, MembershipPlan, MembershipStatusEnum, User, UserMembership
from bargenix.security import create_access_token, get_password_hash, verify_password
from bargenix.services.bargaining_service import FREE_PLAN_SLUG
from bargenix.telemetry import set_user_context, clear_user_context


logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        500: {"model": schemas.ErrorResponse, "description": "Internal Server Error"},
    }
)

COOKIE_MAX_AGE = 7 * 24 * 3600


def set_auth_cookie(response: Response, request: Request, user: User) -> None:
    """Issue the `access_token` cookie ("Bearer <jwt>", sub = user id).

    SameSite=None/Secure is required when dashboard and API live on different
    sites; over plain HTTP browsers drop such cookies, so fall back to Lax.
    """
    token = create_access_token(subject=str(user.id))
    settings = get_settings()

    cookie_kwargs = {
        "key": "access_token",
        "value": f"Bearer {token}",
        "httponly": True,
        "samesite": "none",
        "secure": True,
        "max_age": COOKIE_MAX_AGE,
        "path": "/",
    }
    if request.url.scheme == "http":
        cookie_kwargs["samesite"] = "lax"
        cookie_kwargs["secure"] = False

    # Only set domain if explicitly configured (None for most cases)
    if settings.COOKIE_DOMAIN:
        cookie_kwargs["domain"] = settings.COOKIE_DOMAIN

    response.set_cookie(**cookie_kwargs)


@router.post(
    "/register",
    response_model=schemas.UserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new merchant",
    description="""
    Create a merchant account and sign it in.

    This endpoint:
    - Stores the bcrypt password hash in `auth_credentials`
    - Assigns the free membership plan when it exists
    - Sets the `access_token` cookie
    """,
    responses={
        400: {
            "model": schemas.ErrorResponse,
            "description": "Email already registered",
            "content": {
                "application/json": {
                    "example": {"detail": "Email already registered"}
                }
            }
        }
    }
)
def register_user(
    payload: schemas.UserCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    existing = db.query(User).filter(User.email == payload.email).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    try:
        user = User(
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            company_name=payload.company_name,
            phone=payload.phone,
            last_login_at=datetime.utcnow(),
        )
        db.add(user)
        db.flush()  # assign user.id

        db.add(AuthCredential(user_id=user.id, password_hash=get_password_hash(payload.password)))

        free_plan = db.query(MembershipPlan).filter(MembershipPlan.slug == FREE_PLAN_SLUG).first()
        if free_plan:
            db.add(UserMembership(user_id=user.id, plan_id=free_plan.id, status=MembershipStatusEnum.active))
        else:
            logger.warning("[AUTH] Free plan missing; %s registered without a membership", payload.email)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    set_auth_cookie(response, request, user)
    set_user_context(user_id=str(user.id), email=user.email)

    logger.info(f"[AUTH] Registered user {user.id}")
    return user


@router.post(
    "/login",
    response_model=schemas.LoginResponse,
    summary="Authenticate user",
    description="""
    Authenticate with email and password.

    On success an HTTP-only cookie `access_token` is set with the value
    "Bearer <token>", valid for 7 days.
    """,
)
def login_user(
    payload: schemas.UserLogin,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.email == payload.email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    cred = db.query(AuthCredential).filter(AuthCredential.user_id == user.id).first()
    if not cred or not verify_password(payload.password, cred.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)

    set_auth_cookie(response, request, user)

    # Set Sentry user context for error tracking
    set_user_context(user_id=str(user.id), email=user.email)

    return schemas.LoginResponse(user=schemas.UserOut.model_validate(user))


@router.get(
    "/me",
    response_model=schemas.UserOut,
    summary="Get current user",
    description="Requires a valid JWT in the `access_token` cookie.",
)
def get_me(user: User = Depends(get_current_user)):
    """Return the current authenticated user."""
    return user


@router.post("/logout", summary="Log out")
def logout(response: Response):
    """Clear the auth cookie."""
    settings = get_settings()
    delete_kwargs = {"key": "access_token", "path": "/"}
    if settings.COOKIE_DOMAIN:
        delete_kwargs["domain"] = settings.COOKIE_DOMAIN
    response.delete_cookie(**delete_kwargs)
    clear_user_context()
    return {"detail": "Logged out"}
