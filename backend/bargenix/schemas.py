"""Pydantic schemas for request/response payloads."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID
from typing import Optional, List, Literal, Any
from pydantic import BaseModel, EmailStr, constr, Field, field_validator
from .models import StoreStatusEnum, BargainRequestStatusEnum


# =============================================================================
# COMMON
# =============================================================================

class ErrorResponse(BaseModel):
    detail: str = Field(description="Error message", example="Not authenticated")


class HealthResponse(BaseModel):
    status: str = Field(description="Service status", example="ok")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# =============================================================================
# AUTH & ACCOUNT
# =============================================================================

class UserCreate(BaseModel):
    """Payload for merchant signup."""

    first_name: constr(strip_whitespace=True, min_length=2) = Field(description="First name", example="Jane")
    last_name: constr(strip_whitespace=True, min_length=2) = Field(description="Last name", example="Doe")
    company_name: Optional[str] = Field(None, description="Company name", example="Acme Goods")
    email: EmailStr = Field(description="Login email", example="jane@acme.com")
    password: constr(min_length=8) = Field(description="Password (minimum 8 characters)", example="securePassword123")
    phone: Optional[str] = Field(None, description="Mobile number", example="+15555550100")

    model_config = {
        "json_schema_extra": {
            "example": {
                "first_name": "Jane",
                "last_name": "Doe",
                "company_name": "Acme Goods",
                "email": "jane@acme.com",
                "password": "securePassword123",
                "phone": "+15555550100",
            }
        }
    }


class UserLogin(BaseModel):
    email: EmailStr = Field(description="User email address", example="jane@acme.com")
    password: str = Field(description="User password", example="securePassword123")


class UserOut(BaseModel):
    """Public representation of a merchant."""

    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    company_name: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    user: UserOut


class ProfileUpdate(BaseModel):
    first_name: constr(strip_whitespace=True, min_length=2)
    last_name: constr(strip_whitespace=True, min_length=2)
    email: EmailStr
    company_name: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1, description="Current password")
    new_password: constr(min_length=8) = Field(..., description="New password (min 8 chars)")
    confirm_password: str = Field(..., description="Repeat of the new password")


class NotificationSettings(BaseModel):
    email_notifications: bool = True
    marketing_emails: bool = False
    security_alerts: bool = True
    product_updates: bool = True
    account_activity: bool = True

    model_config = {"from_attributes": True}


class Preferences(BaseModel):
    theme: Literal["light", "dark", "system"] = "system"
    language: constr(min_length=2, max_length=10) = "en"
    auto_save: bool = True
    compact_view: bool = False

    model_config = {"from_attributes": True}


class ActivityOut(BaseModel):
    id: UUID
    activity_type: str
    details: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AccountDeleteRequest(BaseModel):
    confirmation_text: str = Field(..., description='Must be exactly "DELETE"')
    password: str = Field(..., min_length=1)
    reason: Optional[str] = None


# =============================================================================
# SHOPIFY STORES
# =============================================================================

class StoreOut(BaseModel):
    id: UUID
    shop_domain: str
    shop_name: str
    email: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    owner_name: Optional[str] = None
    plan_name: Optional[str] = None
    status: StoreStatusEnum
    last_status_check: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    has_token: bool = False

    model_config = {"from_attributes": True}


class StoreStatusOut(BaseModel):
    success: bool
    is_connected: bool
    status: StoreStatusEnum
    message: str


class UninstallRedirectOut(BaseModel):
    redirect_url: str


class ScriptTagStatus(BaseModel):
    installed: bool
    tags: List[dict] = Field(default_factory=list)


# =============================================================================
# BARGAIN REQUESTS
# =============================================================================

class BargainRequestOut(BaseModel):
    id: UUID
    shop_domain: str
    product_id: str
    variant_id: Optional[str] = None
    product_title: Optional[str] = None
    product_price: Optional[Decimal] = None
    requested_price: Optional[Decimal] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: BargainRequestStatusEnum
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BargainRequestStatusUpdate(BaseModel):
    status: BargainRequestStatusEnum
    notes: Optional[str] = None


class BargainRequestApprove(BaseModel):
    min_price: Decimal = Field(..., ge=0, description="Lowest price the widget may accept")
    original_price: Optional[Decimal] = Field(None, gt=0, description="Defaults to the requested product price")
    behavior: str = Field("normal", description="Opaque behavior tag forwarded to the widget")
    notes: Optional[str] = None


class BargainRequestReject(BaseModel):
    notes: Optional[str] = None


class BargainRequestSubmit(BaseModel):
    """Payload posted by the storefront widget."""

    shop_domain: constr(strip_whitespace=True, min_length=1)
    product_id: constr(strip_whitespace=True, min_length=1)
    variant_id: Optional[str] = None
    product_title: Optional[str] = None
    product_price: Optional[Decimal] = Field(None, ge=0)
    requested_price: Optional[Decimal] = Field(None, ge=0)
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = None


class ProductDetailsOut(BaseModel):
    id: str
    title: str
    price: Optional[float] = None
    image: Optional[str] = None
    available: bool


# =============================================================================
# BARGAINING SETTINGS
# =============================================================================

class BargainingLimitsOut(BaseModel):
    max_products: int
    currently_enabled: int
    membership_level: str
    plan_name: str
    is_limited: bool
    remaining: Optional[int] = None


class BargainingSettingOut(BaseModel):
    id: UUID
    product_id: str
    variant_id: str
    bargaining_enabled: bool
    min_price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    behavior: str
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EnableProductRequest(BaseModel):
    min_price: Decimal = Field(..., ge=0)
    original_price: Decimal = Field(..., gt=0)
    behavior: str = "normal"


class VariantSettingsSave(BaseModel):
    product_id: str
    variant_id: str
    enabled: bool
    min_price: Optional[Decimal] = Field(None, ge=0)
    original_price: Decimal
    behavior: str = "normal"
    inventory_quantity: Optional[int] = None


class VariantPriceIn(BaseModel):
    variant_id: str
    original_price: Decimal = Field(..., gt=0)
    inventory_quantity: Optional[int] = None


class ProductSettingsSave(BaseModel):
    variants: List[VariantPriceIn] = Field(..., min_length=1)
    enabled: bool
    min_price_type: Literal["percentage", "fixed"] = "percentage"
    min_price_value: Decimal = Field(..., ge=0)
    behavior: str = "normal"

    @field_validator("min_price_value")
    @classmethod
    def percentage_in_range(cls, value: Decimal, info) -> Decimal:
        if info.data.get("min_price_type") == "percentage" and value > 100:
            raise ValueError("Percentage must be between 0 and 100")
        return value


class BulkSettingsItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    enabled: bool
    min_price: Optional[Decimal] = Field(None, ge=0)
    original_price: Optional[Decimal] = Field(None, gt=0)
    behavior: str = "normal"


class BulkSettingsRequest(BaseModel):
    items: List[BulkSettingsItem] = Field(..., min_length=1)


class BargainingStatusOut(BaseModel):
    enabled: bool
    min_price: Optional[Decimal] = None
    behavior: str


# =============================================================================
# WIDGET & ANALYTICS
# =============================================================================

class WidgetSettingsOut(BaseModel):
    label: str
    bg_color: str
    text_color: str
    font_size: str
    border_radius: str
    position: str


class WidgetSettingsUpdate(BaseModel):
    label: Optional[constr(min_length=1, max_length=60)] = None
    bg_color: Optional[constr(pattern=r"^#[0-9A-Fa-f]{6}$")] = None
    text_color: Optional[constr(pattern=r"^#[0-9A-Fa-f]{6}$")] = None
    font_size: Optional[str] = None
    border_radius: Optional[str] = None
    position: Optional[Literal["bottom_right", "bottom_left", "top_right", "top_left", "inline"]] = None


class TrackEventRequest(BaseModel):
    """Widget analytics event; accepts the widget's camelCase keys."""

    shop: constr(min_length=1)
    product_id: constr(min_length=1) = Field(alias="productId")
    event_type: constr(min_length=1) = Field(alias="eventType")
    variant_id: Optional[str] = Field(None, alias="variantId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    referrer: Optional[str] = None
    product_title: Optional[str] = Field(None, alias="productTitle")
    product_price: Optional[Decimal] = Field(None, alias="productPrice")
    currency: Optional[str] = None
    event_data: Optional[dict[str, Any]] = Field(None, alias="eventData")

    model_config = {"populate_by_name": True}
