"""Account settings: profile, password, notifications, preferences, deletion.

WHAT:
    Everything on the dashboard's account page. Changes are recorded in
    `user_activity` with the caller's IP address.

REFERENCES:
    - bargenix/routers/auth.py (cookie handling)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from bargenix import schemas
from bargenix.database import get_db
from bargenix.deps import get_current_user, get_settings
from bargenix.models import (
    AccountDeletionLog,
    AuthCredential,
    BargainEvent,
    BargainRequest,
    ProductBargainingSettings,
    ShopifyScriptTag,
    ShopifyStore,
    ShopifyUninstallEvent,
    User,
    UserActivity,
    UserNotificationSettings,
    UserPreferences,
    WidgetSettings,
)
from bargenix.security import get_password_hash, verify_password
from bargenix.telemetry import clear_user_context

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/account",
    tags=["Account"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
    },
)

RECENT_ACTIVITY_LIMIT = 5


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def log_activity(db: Session, user: User, activity_type: str, details: str, request: Request) -> None:
    """Queue an audit row; committed together with the change it describes."""
    db.add(
        UserActivity(
            user_id=user.id,
            activity_type=activity_type,
            details=details,
            ip_address=_client_ip(request),
        )
    )


def _verify_current_password(db: Session, user: User, password: str) -> bool:
    cred = db.query(AuthCredential).filter(AuthCredential.user_id == user.id).first()
    return bool(cred) and verify_password(password, cred.password_hash)


# =============================================================================
# PROFILE
# =============================================================================

@router.get("/profile", response_model=schemas.UserOut)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=schemas.UserOut)
def update_profile(
    payload: schemas.ProfileUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.email != current_user.email:
        taken = db.query(User).filter(User.email == payload.email, User.id != current_user.id).first()
        if taken:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already in use")

    current_user.first_name = payload.first_name
    current_user.last_name = payload.last_name
    current_user.email = payload.email
    current_user.company_name = payload.company_name
    current_user.phone = payload.phone
    current_user.bio = payload.bio
    log_activity(db, current_user, "profile_update", "Profile information updated", request)
    db.commit()
    db.refresh(current_user)
    return current_user


@router.put("/password", response_model=schemas.MessageResponse)
def change_password(
    payload: schemas.PasswordChange,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if payload.new_password != payload.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New passwords do not match")
    if not _verify_current_password(db, current_user, payload.current_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    cred = db.query(AuthCredential).filter(AuthCredential.user_id == current_user.id).first()
    cred.password_hash = get_password_hash(payload.new_password)
    log_activity(db, current_user, "password_change", "Password changed", request)
    db.commit()
    logger.info(f"[ACCOUNT] Password changed for user {current_user.id}")
    return {"success": True, "message": "Password updated"}


# =============================================================================
# NOTIFICATIONS & PREFERENCES
# =============================================================================

@router.get("/notifications", response_model=schemas.NotificationSettings)
def get_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    row = db.query(UserNotificationSettings).filter(UserNotificationSettings.user_id == current_user.id).first()
    if not row:
        return schemas.NotificationSettings()
    return row


@router.put("/notifications", response_model=schemas.NotificationSettings)
def update_notifications(
    payload: schemas.NotificationSettings,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    row = db.query(UserNotificationSettings).filter(UserNotificationSettings.user_id == current_user.id).first()
    if not row:
        row = UserNotificationSettings(user_id=current_user.id)
        db.add(row)
    for field, value in payload.model_dump().items():
        setattr(row, field, value)
    log_activity(db, current_user, "settings_change", "Notification settings updated", request)
    db.commit()
    db.refresh(row)
    return row


@router.get("/preferences", response_model=schemas.Preferences)
def get_preferences(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    row = db.query(UserPreferences).filter(UserPreferences.user_id == current_user.id).first()
    if not row:
        return schemas.Preferences()
    return row


@router.put("/preferences", response_model=schemas.Preferences)
def update_preferences(
    payload: schemas.Preferences,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    row = db.query(UserPreferences).filter(UserPreferences.user_id == current_user.id).first()
    if not row:
        row = UserPreferences(user_id=current_user.id)
        db.add(row)
    for field, value in payload.model_dump().items():
        setattr(row, field, value)
    log_activity(db, current_user, "settings_change", "Preferences updated", request)
    db.commit()
    db.refresh(row)
    return row


@router.get("/activity", response_model=List[schemas.ActivityOut])
def recent_activity(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return (
        db.query(UserActivity)
        .filter(UserActivity.user_id == current_user.id)
        .order_by(UserActivity.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )


# =============================================================================
# DELETION
# =============================================================================

def _delete_user_data(db: Session, user: User) -> List[str]:
    """Remove the user and everything scoped to them or their shops. Does not commit."""
    stores = db.query(ShopifyStore).filter(ShopifyStore.user_id == user.id).all()
    domains = [store.shop_domain for store in stores]

    for model in (BargainEvent, BargainRequest):
        owned = model.user_id == user.id
        if domains:
            owned = or_(owned, and_(model.user_id.is_(None), model.shop_domain.in_(domains)))
        db.query(model).filter(owned).delete(synchronize_session=False)
    if domains:
        for model in (WidgetSettings, ShopifyScriptTag):
            db.query(model).filter(model.shop_domain.in_(domains)).delete(synchronize_session=False)
    db.query(ProductBargainingSettings).filter(
        ProductBargainingSettings.user_id == user.id
    ).delete(synchronize_session=False)
    db.query(ShopifyUninstallEvent).filter(ShopifyUninstallEvent.user_id == user.id).delete(
        synchronize_session=False
    )

    for store in stores:
        db.delete(store)  # tokens cascade
    db.flush()
    db.delete(user)  # credential, memberships, settings and activity cascade
    return domains


@router.delete("", response_model=schemas.MessageResponse)
def delete_account(
    payload: schemas.AccountDeleteRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Permanently delete the account after "DELETE" confirmation and password check."""
    if payload.confirmation_text != "DELETE":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Type "DELETE" to confirm')
    if not _verify_current_password(db, current_user, payload.password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password is incorrect")

    user_id = current_user.id
    email = current_user.email
    try:
        log = AccountDeletionLog(
            original_user_id=user_id,
            email=email,
            reason=payload.reason,
            ip_address=_client_ip(request),
            status="completed",
        )
        db.add(log)
        log.store_domains = _delete_user_data(db, current_user)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"[ACCOUNT] Account deletion failed for {user_id}")
        raise

    settings = get_settings()
    delete_kwargs = {"key": "access_token", "path": "/"}
    if settings.COOKIE_DOMAIN:
        delete_kwargs["domain"] = settings.COOKIE_DOMAIN
    response.delete_cookie(**delete_kwargs)
    clear_user_context()

    logger.info(f"[ACCOUNT] Deleted account {user_id}")
    return {"success": True, "message": "Account deleted"}
