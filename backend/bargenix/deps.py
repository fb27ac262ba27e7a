"""Dependency providers and settings management."""

import uuid
from functools import lru_cache
from typing import List, Optional

from fastapi import Cookie, Depends, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import User
from .security import decode_token


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    # Cookie domain must NOT include protocol (https://)
    COOKIE_DOMAIN: Optional[str] = None
    ADMIN_SECRET_KEY: str = "supersecretkey-change-this-in-production"
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: Optional[str] = None
    ENVIRONMENT: str = "production"

    # Shopify app credentials (Partners dashboard)
    SHOPIFY_API_KEY: Optional[str] = None
    SHOPIFY_API_SECRET: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2024-07"
    SHOPIFY_SCOPES: str = "read_products,write_products,read_script_tags,write_script_tags,read_themes,write_content,read_shop"

    # Public URLs
    APP_URL: Optional[str] = None  # this API, used for OAuth redirect_uri
    FRONTEND_URL: Optional[str] = None  # merchant dashboard
    WIDGET_SCRIPT_URL: Optional[str] = None  # defaults to {APP_URL}/widget/bargain-widget.js

    # Analytics
    ANALYTICS_IP_SALT: str = "bargenix-analytics"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def widget_script_url(self) -> str:
        if self.WIDGET_SCRIPT_URL:
            return self.WIDGET_SCRIPT_URL
        return f"{(self.APP_URL or '').rstrip('/')}/widget/bargain-widget.js"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def _resolve_user(db: Session, access_token: Optional[str]) -> Optional[User]:
    if not access_token:
        return None

    # Remove optional "Bearer " prefix
    if access_token.startswith("Bearer "):
        token = access_token[len("Bearer ") :]
    else:
        token = access_token

    try:
        payload = decode_token(token)
        subject = uuid.UUID(str(payload.get("sub")))
    except Exception:
        return None

    return db.query(User).filter(User.id == subject).first()


def get_current_user(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
) -> User:
    """Resolve the current user from the `access_token` cookie.

    The cookie value is expected to be in the form: "Bearer <jwt>".
    """
    if not access_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = _resolve_user(db, access_token)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


def get_optional_user(
    db: Session = Depends(get_db),
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
) -> Optional[User]:
    """Same as `get_current_user` but returns None instead of raising.

    Used by redirect-based endpoints (OAuth callback) that report auth
    failures to the frontend rather than as JSON 401s.
    """
    return _resolve_user(db, access_token)
