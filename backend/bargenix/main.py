"""FastAPI application entrypoint.

Configures middleware, includes routers, mounts the admin panel and exposes a
healthcheck endpoint.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from sqladmin import Admin, ModelView
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response as StarletteResponse
import logging
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .authentication import SimpleAuth
from .database import engine
from .deps import get_settings
from .telemetry import init_sentry
from .routers import auth as auth_router
from .routers import account as account_router
from .routers import shopify_oauth as shopify_oauth_router  # Shopify OAuth flow
from .routers import shopify_stores as shopify_stores_router  # Store lifecycle + script tags
from .routers import shopify_webhooks as shopify_webhooks_router  # app/uninstalled + compliance
from .routers import bargain_requests as bargain_requests_router
from .routers import bargaining as bargaining_router
from .routers import widget as widget_router  # Public storefront widget endpoints
from .routers import analytics as analytics_router
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


# Paths called from merchant storefronts (any origin, no credentials)
PUBLIC_WIDGET_PREFIXES = ("/bargain/", "/widget-settings/")


# SQLAdmin ModelView classes
# WHEN MAKING CHANGES TO THESE CLASSES, MAKE SURE TO UPDATE THE __str__ METHODS IN THE MODELS.PY FILE

class UserAdmin(ModelView, model=models.User):
    column_list = [models.User.id, models.User.email, models.User.first_name, models.User.last_name, models.User.company_name, models.User.created_at]
    form_columns = ["email", "first_name", "last_name", "company_name", "phone", "bio"]
    column_searchable_list = ["email", "first_name", "last_name", "company_name"]
    column_sortable_list = ["email", "created_at"]
    name = "User"
    name_plural = "Users"
    icon = "fa-solid fa-user"


class MembershipPlanAdmin(ModelView, model=models.MembershipPlan):
    """Plans are managed here; `product_limit <= 0` means unlimited."""
    column_list = [models.MembershipPlan.name, models.MembershipPlan.slug, models.MembershipPlan.product_limit, models.MembershipPlan.price, models.MembershipPlan.is_active]
    form_columns = ["name", "slug", "product_limit", "price", "is_active"]
    column_sortable_list = ["name", "product_limit", "price"]
    name = "Membership Plan"
    name_plural = "Membership Plans"
    icon = "fa-solid fa-layer-group"


class UserMembershipAdmin(ModelView, model=models.UserMembership):
    column_list = [models.UserMembership.id, models.UserMembership.user, models.UserMembership.plan, models.UserMembership.status, models.UserMembership.started_at]
    form_columns = ["user", "plan", "status", "started_at", "cancelled_at"]
    column_sortable_list = ["status", "started_at"]
    form_ajax_refs = {
        "user": {
            "fields": ["email", "first_name", "last_name"],
            "order_by": "email",
        }
    }
    name = "Membership"
    name_plural = "Memberships"
    icon = "fa-solid fa-id-card"


class ShopifyStoreAdmin(ModelView, model=models.ShopifyStore):
    column_list = [models.ShopifyStore.id, models.ShopifyStore.shop_domain, models.ShopifyStore.shop_name, models.ShopifyStore.user, models.ShopifyStore.status, models.ShopifyStore.last_status_check]
    form_columns = ["shop_domain", "shop_name", "email", "currency", "timezone", "plan_name", "status", "user"]
    column_searchable_list = ["shop_domain", "shop_name"]
    column_sortable_list = ["shop_domain", "status", "last_status_check"]
    form_ajax_refs = {
        "user": {
            "fields": ["email"],
            "order_by": "email",
        }
    }
    name = "Shopify Store"
    name_plural = "Shopify Stores"
    icon = "fa-brands fa-shopify"


class ShopifyUninstallEventAdmin(ModelView, model=models.ShopifyUninstallEvent):
    column_list = [models.ShopifyUninstallEvent.shop_domain, models.ShopifyUninstallEvent.reason, models.ShopifyUninstallEvent.created_at]
    column_searchable_list = ["shop_domain", "reason"]
    column_sortable_list = ["created_at"]
    can_create = False
    can_edit = False
    name = "Uninstall Event"
    name_plural = "Uninstall Events"
    icon = "fa-solid fa-plug-circle-xmark"


class BargainRequestAdmin(ModelView, model=models.BargainRequest):
    column_list = [models.BargainRequest.id, models.BargainRequest.shop_domain, models.BargainRequest.product_title, models.BargainRequest.product_price, models.BargainRequest.requested_price, models.BargainRequest.status, models.BargainRequest.created_at]
    form_columns = ["status", "notes"]
    column_searchable_list = ["shop_domain", "product_title", "customer_email"]
    column_sortable_list = ["status", "created_at"]
    name = "Bargain Request"
    name_plural = "Bargain Requests"
    icon = "fa-solid fa-handshake"


class ProductBargainingSettingsAdmin(ModelView, model=models.ProductBargainingSettings):
    column_list = [models.ProductBargainingSettings.product_id, models.ProductBargainingSettings.variant_id, models.ProductBargainingSettings.bargaining_enabled, models.ProductBargainingSettings.min_price, models.ProductBargainingSettings.original_price, models.ProductBargainingSettings.behavior]
    form_columns = ["bargaining_enabled", "min_price", "original_price", "behavior"]
    column_searchable_list = ["product_id"]
    column_sortable_list = ["bargaining_enabled", "updated_at"]
    name = "Bargaining Setting"
    name_plural = "Bargaining Settings"
    icon = "fa-solid fa-tags"


class WidgetSettingsAdmin(ModelView, model=models.WidgetSettings):
    column_list = [models.WidgetSettings.shop_domain, models.WidgetSettings.label, models.WidgetSettings.bg_color, models.WidgetSettings.position]
    form_columns = ["shop_domain", "label", "bg_color", "text_color", "font_size", "border_radius", "position"]
    column_searchable_list = ["shop_domain"]
    name = "Widget Settings"
    name_plural = "Widget Settings"
    icon = "fa-solid fa-palette"


class AccountDeletionLogAdmin(ModelView, model=models.AccountDeletionLog):
    column_list = [models.AccountDeletionLog.email, models.AccountDeletionLog.reason, models.AccountDeletionLog.status, models.AccountDeletionLog.created_at]
    column_searchable_list = ["email"]
    column_sortable_list = ["created_at"]
    can_create = False
    can_edit = False
    name = "Account Deletion"
    name_plural = "Account Deletions"
    icon = "fa-solid fa-user-slash"


class PublicWidgetCORSMiddleware(BaseHTTPMiddleware):
    """Allow any storefront origin on the widget endpoints.

    The widget is injected into arbitrary myshopify.com (and custom) domains and
    sends no credentials, so a wildcard origin is used. Dashboard routes keep the
    credentialed CORSMiddleware rules.
    """

    CORS_HEADERS = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
    }

    async def dispatch(self, request, call_next):
        if not request.url.path.startswith(PUBLIC_WIDGET_PREFIXES):
            return await call_next(request)

        if request.method == "OPTIONS":
            return StarletteResponse(status_code=200, headers=self.CORS_HEADERS)

        response = await call_next(request)
        for key, value in self.CORS_HEADERS.items():
            response.headers[key] = value
        return response


def create_app() -> FastAPI:
    init_sentry()

    app = FastAPI(
        title="Bargenix API",
        description="""
        Bargenix lets Shopify merchants offer price negotiation on product pages.

        This API provides endpoints for:
        - Merchant authentication and account settings
        - Shopify store connection (OAuth), status tracking and uninstall handling
        - Bargain request review and approval
        - Per-product bargaining settings and plan limits
        - Public storefront widget endpoints and analytics

        ## Authentication

        Dashboard endpoints use a JWT in the HTTP-only `access_token` cookie.
        Widget endpoints under `/bargain/` and `/widget-settings/{shop}` are public.
        """,
        version="1.0.0",
        license_info={
            "name": "Proprietary",
        },
    )

    # Trust X-Forwarded-Proto so request.url.scheme is "https" behind the load balancer
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()

    # Session middleware for admin panel authentication
    if settings.ADMIN_SECRET_KEY == "supersecretkey-change-this-in-production":
        logger.warning("[ADMIN] Using default admin secret key. Set ADMIN_SECRET_KEY for production.")

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.ADMIN_SECRET_KEY
    )

    allowed_origins = settings.cors_origins
    if settings.FRONTEND_URL and settings.FRONTEND_URL.rstrip("/") not in allowed_origins:
        allowed_origins.append(settings.FRONTEND_URL.rstrip("/"))

    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added after CORSMiddleware so it runs first
    app.add_middleware(PublicWidgetCORSMiddleware)

    app.include_router(auth_router.router)
    app.include_router(account_router.router)
    app.include_router(shopify_oauth_router.router)
    app.include_router(shopify_stores_router.router)
    app.include_router(shopify_webhooks_router.router)
    app.include_router(bargain_requests_router.router)
    app.include_router(bargaining_router.router)
    app.include_router(widget_router.router)
    app.include_router(analytics_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="Unauthenticated liveness probe for load balancers.",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    # Admin panel
    authentication_backend = SimpleAuth(secret_key=settings.ADMIN_SECRET_KEY)
    admin = Admin(
        app,
        engine,
        title="Bargenix Admin",
        authentication_backend=authentication_backend
    )

    admin.add_view(UserAdmin)
    admin.add_view(MembershipPlanAdmin)
    admin.add_view(UserMembershipAdmin)
    admin.add_view(ShopifyStoreAdmin)
    admin.add_view(ShopifyUninstallEventAdmin)
    admin.add_view(BargainRequestAdmin)
    admin.add_view(ProductBargainingSettingsAdmin)
    admin.add_view(WidgetSettingsAdmin)
    admin.add_view(AccountDeletionLogAdmin)

    # Custom OpenAPI schema with security definitions
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": "access_token",
                "description": "JWT token stored in HTTP-only cookie. Format: 'Bearer <token>'"
            }
        }

        public_endpoints = {"/health", "/auth/register", "/auth/login", "/auth/shopify/callback", "/webhooks/shopify"}

        for path in openapi_schema["paths"]:
            if path in public_endpoints or path.startswith(PUBLIC_WIDGET_PREFIXES):
                continue
            for method in openapi_schema["paths"][path]:
                if "security" not in openapi_schema["paths"][path][method]:
                    openapi_schema["paths"][path][method]["security"] = [
                        {"cookieAuth": []}
                    ]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
