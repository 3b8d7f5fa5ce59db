"""
SQLAlchemy Database Models

Backing tables for the SQL persistence provider. Every table is keyed by a
string id so records round-trip as plain JSON documents through the
provider interface. Nested payloads (order lines, tracking updates, rating
categories, application details) are stored as JSON columns.
"""

import enum

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text, UniqueConstraint

from foodnow.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ActorRole(str, enum.Enum):
    """Who is asking for a status change."""
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    RIDER = "rider"
    DISPATCH = "dispatch"


class RatingTarget(str, enum.Enum):
    RESTAURANT = "restaurant"
    RIDER = "rider"


class TransactionType(str, enum.Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    BONUS = "bonus"


class ApplicationKind(str, enum.Enum):
    RESTAURANT = "restaurant"
    RIDER = "rider"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Order(Base):
    """
    Customer order.

    Tracks the complete lifecycle from placement to delivery or cancellation.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)

    # =========================================================================
    # PARTIES
    # =========================================================================
    customer_id = Column(String(36), nullable=False, index=True)
    restaurant_id = Column(String(36), nullable=False, index=True)
    rider_id = Column(String(36), nullable=True, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False, default=list)
    delivery_address = Column(JSON, nullable=True)
    special_instructions = Column(Text, nullable=True)
    contact_phone = Column(String(32), nullable=True)
    contact_email = Column(String(255), nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    service_fee = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # =========================================================================
    # PAYMENT
    # =========================================================================
    payment_method = Column(String(20), nullable=False, default="card")
    payment_status = Column(String(20), nullable=False, default="pending")

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    cancellation_reason = Column(Text, nullable=True)
    tracking_updates = Column(JSON, nullable=False, default=list)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_preparing_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    rider_assigned_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Order {self.order_number} - {self.status}>"


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(String(36), primary_key=True)
    restaurant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    base_price = Column(Float, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("customer_id", "order_id", "target_type", "target_id"),
    )

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(36), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)
    target_id = Column(String(36), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    categories = Column(JSON, nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    is_hidden = Column(Boolean, nullable=False, default=False)
    hidden_reason = Column(Text, nullable=True)
    moderated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RatingAggregate(Base):
    """Cached public rating figures; id is '<target_type>:<target_id>'."""
    __tablename__ = "rating_aggregates"

    id = Column(String(80), primary_key=True)
    target_type = Column(String(20), nullable=False)
    target_id = Column(String(36), nullable=False)
    average = Column(Float, nullable=False, default=0.0)
    total = Column(Integer, nullable=False, default=0)
    category_averages = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class LoyaltyAccount(Base):
    """Balance cache; reward_transactions is the source of truth."""
    __tablename__ = "loyalty_accounts"

    id = Column(String(36), primary_key=True)
    current_points = Column(Integer, nullable=False, default=0)
    lifetime_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RewardTransaction(Base):
    __tablename__ = "reward_transactions"

    id = Column(String(36), primary_key=True)
    account_id = Column(String(36), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    category = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    order_id = Column(String(36), nullable=True)
    previous_balance = Column(Integer, nullable=False)
    new_balance = Column(Integer, nullable=False)
    discount_amount = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class CustomerBadge(Base):
    """id is '<account_id>:<badge_id>' so a badge can only be stored once."""
    __tablename__ = "customer_badges"

    id = Column(String(80), primary_key=True)
    account_id = Column(String(36), nullable=False, index=True)
    badge_id = Column(String(40), nullable=False)
    name = Column(String(80), nullable=False)
    earned_at = Column(DateTime(timezone=True), nullable=False)


class PartnerApplication(Base):
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True)
    kind = Column(String(20), nullable=False, index=True)
    applicant_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ApplicationStatus.PENDING.value)
    details = Column(JSON, nullable=False)
    reviewed_by = Column(String(36), nullable=True)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
