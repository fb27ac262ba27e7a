"""Session-based login for the sqladmin panel.

Credentials come from ADMIN_USERNAME / ADMIN_PASSWORD. Without a configured
password the panel refuses every login.
"""

import hmac
import logging
import secrets

from sqladmin.authentication import AuthenticationBackend
from starlette.requests import Request

from .deps import get_settings

logger = logging.getLogger(__name__)


class SimpleAuth(AuthenticationBackend):
    async def login(self, request: Request) -> bool:
        form = await request.form()
        username = str(form.get("username") or "")
        password = str(form.get("password") or "")

        settings = get_settings()
        if not settings.ADMIN_PASSWORD:
            logger.warning("[ADMIN] Login attempted but ADMIN_PASSWORD is not set")
            return False

        valid = hmac.compare_digest(username, settings.ADMIN_USERNAME) and hmac.compare_digest(
            password, settings.ADMIN_PASSWORD
        )
        if not valid:
            logger.warning("[ADMIN] Failed admin login for %s", username)
            return False

        request.session.update({"admin_token": secrets.token_urlsafe(32)})
        return True

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        return bool(request.session.get("admin_token"))
