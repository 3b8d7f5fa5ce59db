"""
Pydantic Schemas for Request/Response Validation

Request bodies use camelCase on the wire (``restaurantId``,
``rejectionReason``) and snake_case in Python; both spellings are accepted.

Partner applications are a tagged union on ``kind``: pydantic picks the
restaurant or rider model from the tag and validates only that model's fields.
"""

import re
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _validate_phone(v: str) -> str:
    cleaned = re.sub(r'[^\d]', '', v)
    if len(cleaned) < 10:
        raise ValueError('Phone number must have at least 10 digits')
    return v


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class OrderItemCreate(CamelModel):
    """Single line in a new order. Prices come from the menu, not the client."""
    menu_item_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])
    customizations: List[str] = Field(default_factory=list)


class DeliveryAddress(CamelModel):
    street: str = Field(..., min_length=3, max_length=255, examples=["12 Admiralty Way"])
    city: str = Field(..., max_length=80, examples=["Lagos"])
    state: Optional[str] = Field(None, max_length=80)
    landmark: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class OrderCreate(CamelModel):
    """Request schema for placing an order."""
    customer_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
    items: List[OrderItemCreate] = Field(..., min_length=1)
    delivery_address: Optional[DeliveryAddress] = None
    delivery_fee: float = Field(default=0.0, ge=0)
    payment_method: str = Field(default="card", examples=["card", "cash", "transfer"])
    special_instructions: Optional[str] = Field(None, max_length=500)
    contact_phone: Optional[str] = Field(None, examples=["+2348012345678"])
    contact_email: Optional[str] = Field(None, examples=["ada@example.com"])
    redeem_points: Optional[int] = Field(None, gt=0)

    @field_validator('contact_phone')
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_phone(v) if v else None

    @field_validator('contact_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        # Basic email validation
        if not re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError('Invalid email format')
        return v


class OrderCancel(CamelModel):
    customer_id: str
    reason: str = Field(..., min_length=1, max_length=500)


class RestaurantStatusUpdate(CamelModel):
    """PATCH body for a restaurant changing one of its orders."""
    status: str = Field(..., examples=["confirmed"])
    restaurant_id: str
    rejection_reason: Optional[str] = Field(None, max_length=500)


class RiderAccept(CamelModel):
    order_id: str
    rider_id: str


class RiderAction(CamelModel):
    rider_id: str


# =============================================================================
# MENU SCHEMAS
# =============================================================================

class MenuItemCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=120, examples=["Jollof Rice"])
    base_price: float = Field(..., ge=0, examples=[2500.0])
    description: Optional[str] = Field(None, max_length=500)
    is_available: bool = True


# =============================================================================
# RATING SCHEMAS
# =============================================================================

class RatingCreate(CamelModel):
    customer_id: str
    order_id: str
    target_type: Literal["restaurant", "rider"]
    target_id: str
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    categories: Optional[dict[str, Annotated[int, Field(ge=1, le=5)]]] = None
    is_anonymous: bool = False


class RatingFlag(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)
    admin_id: str


# =============================================================================
# REWARD SCHEMAS
# =============================================================================

class RedeemRequest(CamelModel):
    points: int = Field(..., gt=0)
    order_id: Optional[str] = None


# =============================================================================
# PARTNER APPLICATION SCHEMAS
# =============================================================================

class RestaurantApplication(CamelModel):
    kind: Literal["restaurant"]
    applicant_id: str
    business_name: str = Field(..., min_length=2, max_length=120)
    address: str = Field(..., min_length=5, max_length=255)
    cuisine_types: List[str] = Field(..., min_length=1)
    phone: str

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _validate_phone(v)


class RiderApplication(CamelModel):
    kind: Literal["rider"]
    applicant_id: str
    full_name: str = Field(..., min_length=2, max_length=120)
    phone: str
    vehicle_type: Literal["bicycle", "motorcycle"]
    licence_number: Optional[str] = Field(None, max_length=40)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return _validate_phone(v)

    @model_validator(mode="after")
    def require_licence_for_motorcycles(self) -> "RiderApplication":
        if self.vehicle_type == "motorcycle" and not self.licence_number:
            raise ValueError("A licence number is required for motorcycle riders")
        return self


ApplicationCreate = Annotated[
    Union[RestaurantApplication, RiderApplication],
    Field(discriminator="kind"),
]

application_adapter = TypeAdapter(ApplicationCreate)


class ApplicationReview(CamelModel):
    decision: Literal["approved", "rejected"]
    admin_id: str
    notes: Optional[str] = Field(None, max_length=1000)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ApiResponse(BaseModel):
    """Envelope for every JSON response."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    persistence: str
    redis: str
    notification_service: str
    timestamp: datetime


class QueueCommand(CamelModel):
    """Message a console sends over the queue WebSocket."""
    action: Literal["accept", "reject"]
    order_id: str
    reason: Optional[str] = None
