"""
FastAPI Application Entry Point

FoodNow Order Service - marketplace backend for restaurants, riders and
customers. Runs on in-memory persistence and mock notifications in
development, and on PostgreSQL with Twilio/SendGrid otherwise.

Endpoints:
    - POST /api/orders: Place an order
    - GET /api/orders/restaurant: Restaurant order queue
    - PATCH /api/orders/restaurant/{order_id}: Restaurant status change
    - POST /api/riders/orders/...: Rider accept, pickup, deliver
    - /api/restaurants/{id}/menu: Menu items
    - /api/ratings: Ratings and moderation
    - /api/rewards/{customer_id}: Loyalty balance, history, redemption
    - /api/applications: Partner applications
    - WS /ws/restaurants/{id}/queue: Live queue with auto-accept countdowns
    - GET /health: System health check
"""

import logging
from datetime import datetime, timezone
from dataclasses import asdict
from typing import Any, Optional
from contextlib import asynccontextmanager

import redis
from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from foodnow.core.config import get_settings, setup_logging
from foodnow.core.exceptions import FoodNowError
from foodnow.database import init_db
from foodnow.models import ActorRole, OrderStatus, RatingTarget
from foodnow.schemas import (
    ApiResponse,
    ApplicationReview,
    HealthResponse,
    MenuItemCreate,
    OrderCancel,
    OrderCreate,
    QueueCommand,
    RatingCreate,
    RatingFlag,
    RedeemRequest,
    RestaurantStatusUpdate,
    RiderAccept,
    RiderAction,
)
from foodnow.services.applications import ApplicationService
from foodnow.services.notifications import BaseNotificationService, get_notification_service
from foodnow.services.orders import OrderQueueSession, OrderService
from foodnow.services.persistence import BasePersistenceProvider, get_persistence_provider
from foodnow.services.ratings import RatingService
from foodnow.services.rewards import LoyaltyService

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Statuses a restaurant may request through the PATCH endpoint
RESTAURANT_STATUSES = (
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
    OrderStatus.CANCELLED.value,
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_store() -> BasePersistenceProvider:
    return get_persistence_provider()


def get_notifications() -> BaseNotificationService:
    return get_notification_service()


def get_loyalty_service(store: BasePersistenceProvider = Depends(get_store)) -> LoyaltyService:
    return LoyaltyService(store)


def get_order_service(
    store: BasePersistenceProvider = Depends(get_store),
    notifications: BaseNotificationService = Depends(get_notifications),
    loyalty: LoyaltyService = Depends(get_loyalty_service),
) -> OrderService:
    return OrderService(store, notifications=notifications, loyalty=loyalty)


def get_rating_service(
    store: BasePersistenceProvider = Depends(get_store),
    loyalty: LoyaltyService = Depends(get_loyalty_service),
) -> RatingService:
    return RatingService(store, loyalty=loyalty)


def get_application_service(store: BasePersistenceProvider = Depends(get_store)) -> ApplicationService:
    return ApplicationService(store)


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = get_persistence_provider()
    if store.provider_name == "sql":
        await init_db()
        logger.info("Database initialized")

    notification_service = get_notification_service()
    logger.info(f"Persistence: {store.provider_name}")
    logger.info(f"Notification Service: {notification_service.provider_name}")
    logger.info(f"Auto-accept window: {settings.auto_accept_window_seconds}s "
                f"(worker {'enabled' if settings.auto_accept_worker_enabled else 'disabled'})")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await store.close()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Food delivery marketplace backend: order lifecycle, restaurant "
        "auto-accept, loyalty rewards and ratings."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BasePersistenceProvider = Depends(get_store),
    notifications: BaseNotificationService = Depends(get_notifications),
) -> HealthResponse:
    """Verify all system components are operational."""

    persistence_status = "healthy" if await store.health_check() else "unhealthy"

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    notification_status = "healthy" if await notifications.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [persistence_status, redis_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        persistence=persistence_status,
        redis=redis_status,
        notification_service=notification_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# RESTAURANT ORDER ENDPOINTS
# =============================================================================

@app.get("/api/orders/restaurant", tags=["Restaurant Orders"], summary="Restaurant Order Queue")
async def list_restaurant_orders(
    restaurant_id: str = Query(..., min_length=1),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    orders: OrderService = Depends(get_order_service),
):
    if status is not None and status not in {s.value for s in OrderStatus}:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid status. Options: {[s.value for s in OrderStatus]}"},
        )
    return ok(await orders.list_restaurant_orders(restaurant_id, status, limit=limit))


@app.get("/api/orders/restaurant/{order_id}", tags=["Restaurant Orders"])
async def get_restaurant_order(
    order_id: str,
    restaurant_id: str = Query(..., min_length=1),
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.get_restaurant_order(order_id, restaurant_id))


@app.patch(
    "/api/orders/restaurant/{order_id}",
    response_model=ApiResponse,
    tags=["Restaurant Orders"],
    summary="Restaurant Status Update",
)
async def update_restaurant_order(
    order_id: str,
    body: RestaurantStatusUpdate,
    orders: OrderService = Depends(get_order_service),
):
    """
    Accept, progress or reject an order.

    ``status`` must be confirmed, preparing, ready or cancelled; a
    cancellation needs ``rejectionReason``.
    """
    if body.status not in RESTAURANT_STATUSES:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid status. Options: {list(RESTAURANT_STATUSES)}"},
        )

    order = await orders.get_restaurant_order(order_id, body.restaurant_id)
    updated = await orders.transition(
        order,
        body.status,
        ActorRole.RESTAURANT,
        actor_id=body.restaurant_id,
        reason=body.rejection_reason,
    )
    return ok(updated)


# =============================================================================
# CUSTOMER ORDER ENDPOINTS
# =============================================================================

@app.post("/api/orders", status_code=201, response_model=ApiResponse, tags=["Orders"], summary="Place Order")
async def create_order(
    order_data: OrderCreate,
    orders: OrderService = Depends(get_order_service),
):
    logger.info(f"Creating order for customer {order_data.customer_id} at {order_data.restaurant_id}")

    order = await orders.create_order(
        customer_id=order_data.customer_id,
        restaurant_id=order_data.restaurant_id,
        items=[item.model_dump() for item in order_data.items],
        delivery_address=order_data.delivery_address.model_dump() if order_data.delivery_address else None,
        delivery_fee=order_data.delivery_fee,
        payment_method=order_data.payment_method,
        special_instructions=order_data.special_instructions,
        contact_phone=order_data.contact_phone,
        contact_email=order_data.contact_email,
        redeem_points=order_data.redeem_points,
    )
    return ok(order)


@app.get("/api/orders/{order_id}", tags=["Orders"])
async def get_order(order_id: str, orders: OrderService = Depends(get_order_service)):
    return ok(await orders.get_order(order_id))


@app.post("/api/orders/{order_id}/cancel", response_model=ApiResponse, tags=["Orders"])
async def cancel_order(
    order_id: str,
    body: OrderCancel,
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.cancel_order(order_id, body.customer_id, body.reason))


@app.get("/api/customers/{customer_id}/orders", tags=["Orders"])
async def list_customer_orders(
    customer_id: str,
    limit: int = Query(20, ge=1, le=100),
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.list_customer_orders(customer_id, limit=limit))


# =============================================================================
# RIDER ENDPOINTS
# =============================================================================

@app.post("/api/riders/orders/accept", response_model=ApiResponse, tags=["Riders"])
async def rider_accept_order(body: RiderAccept, orders: OrderService = Depends(get_order_service)):
    """Take an unassigned order. 409 if another rider got there first."""
    return ok(await orders.assign_rider(body.order_id, body.rider_id))


@app.post("/api/riders/orders/{order_id}/pickup", response_model=ApiResponse, tags=["Riders"])
async def rider_pickup_order(
    order_id: str,
    body: RiderAction,
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.transition(
        order_id, OrderStatus.PICKED_UP, ActorRole.RIDER, actor_id=body.rider_id,
        message="Order picked up by rider",
    ))


@app.post("/api/riders/orders/{order_id}/deliver", response_model=ApiResponse, tags=["Riders"])
async def rider_deliver_order(
    order_id: str,
    body: RiderAction,
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.transition(
        order_id, OrderStatus.DELIVERED, ActorRole.RIDER, actor_id=body.rider_id,
    ))


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.post("/api/restaurants/{restaurant_id}/menu", status_code=201, response_model=ApiResponse, tags=["Menu"])
async def add_menu_item(
    restaurant_id: str,
    body: MenuItemCreate,
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.add_menu_item(
        restaurant_id,
        name=body.name,
        base_price=body.base_price,
        description=body.description,
        is_available=body.is_available,
    ))


@app.get("/api/restaurants/{restaurant_id}/menu", tags=["Menu"])
async def list_menu(
    restaurant_id: str,
    available_only: bool = Query(False),
    orders: OrderService = Depends(get_order_service),
):
    return ok(await orders.list_menu(restaurant_id, available_only=available_only))


# =============================================================================
# RATING ENDPOINTS
# =============================================================================

@app.post("/api/ratings", status_code=201, response_model=ApiResponse, tags=["Ratings"])
async def submit_rating(body: RatingCreate, ratings: RatingService = Depends(get_rating_service)):
    rating = await ratings.submit_rating(
        customer_id=body.customer_id,
        order_id=body.order_id,
        target_type=body.target_type,
        target_id=body.target_id,
        score=body.score,
        comment=body.comment,
        categories=body.categories,
        is_anonymous=body.is_anonymous,
    )
    return ok(rating)


@app.get("/api/ratings/{target_type}/{target_id}", tags=["Ratings"])
async def get_ratings(
    target_type: RatingTarget,
    target_id: str,
    detailed: bool = Query(False, description="Include individual ratings (target's own view)"),
    ratings: RatingService = Depends(get_rating_service),
):
    summary = await ratings.get_summary(target_type, target_id)
    if detailed:
        summary["ratings"] = await ratings.list_ratings(target_type, target_id)
    return ok(summary)


@app.post("/api/ratings/{rating_id}/flag", response_model=ApiResponse, tags=["Ratings"])
async def flag_rating(
    rating_id: str,
    body: RatingFlag,
    ratings: RatingService = Depends(get_rating_service),
):
    return ok(await ratings.flag_rating(rating_id, body.reason, body.admin_id))


@app.get("/api/customers/{customer_id}/ratings", tags=["Ratings"])
async def customer_ratings(customer_id: str, ratings: RatingService = Depends(get_rating_service)):
    return ok(await ratings.customer_history(customer_id))


# =============================================================================
# REWARD ENDPOINTS
# =============================================================================

@app.get("/api/rewards/{customer_id}", tags=["Rewards"])
async def get_rewards(customer_id: str, loyalty: LoyaltyService = Depends(get_loyalty_service)):
    account = await loyalty.get_account(customer_id)
    next_tier = loyalty.next_tier(account["current_points"])
    return ok({
        **account,
        "badges": await loyalty.badges(customer_id),
        "tiers": [asdict(tier) for tier in loyalty.tiers],
        "next_tier": asdict(next_tier) if next_tier else None,
    })


@app.get("/api/rewards/{customer_id}/transactions", tags=["Rewards"])
async def get_reward_transactions(
    customer_id: str,
    limit: int = Query(50, ge=1, le=200),
    loyalty: LoyaltyService = Depends(get_loyalty_service),
):
    return ok(await loyalty.transactions(customer_id, limit=limit))


@app.post("/api/rewards/{customer_id}/redeem", response_model=ApiResponse, tags=["Rewards"])
async def redeem_points(
    customer_id: str,
    body: RedeemRequest,
    loyalty: LoyaltyService = Depends(get_loyalty_service),
):
    discount = await loyalty.redeem(customer_id, body.points, body.order_id)
    account = await loyalty.get_account(customer_id)
    return ok({"discount_amount": discount, "current_points": account["current_points"]})


# =============================================================================
# PARTNER APPLICATION ENDPOINTS
# =============================================================================

@app.post("/api/applications", status_code=201, response_model=ApiResponse, tags=["Applications"])
async def submit_application(
    request: Request,
    applications: ApplicationService = Depends(get_application_service),
):
    """Restaurant or rider application; the body's ``kind`` selects the form."""
    payload = await request.json()
    return ok(await applications.submit(payload))


@app.get("/api/applications/{application_id}", tags=["Applications"])
async def get_application(
    application_id: str,
    applications: ApplicationService = Depends(get_application_service),
):
    return ok(await applications.get(application_id))


@app.patch("/api/applications/{application_id}", response_model=ApiResponse, tags=["Applications"])
async def review_application(
    application_id: str,
    body: ApplicationReview,
    applications: ApplicationService = Depends(get_application_service),
):
    return ok(await applications.review(application_id, body.decision, body.admin_id, body.notes))


# =============================================================================
# LIVE QUEUE
# =============================================================================

@app.websocket("/ws/restaurants/{restaurant_id}/queue")
async def restaurant_queue(
    websocket: WebSocket,
    restaurant_id: str,
    store: BasePersistenceProvider = Depends(get_store),
    orders: OrderService = Depends(get_order_service),
):
    """
    Live order queue for one operator console.

    Server messages: ``snapshot`` on connect, then ``order`` on every change,
    ``tick`` each second of a countdown and ``concluded`` once an order was
    accepted, rejected or auto-accepted. Clients send
    ``{"action": "accept"|"reject", "orderId": ..., "reason": ...}``.
    """
    await websocket.accept()

    async def send(message: dict) -> None:
        await websocket.send_json(jsonable_encoder(message))

    session = OrderQueueSession(restaurant_id, orders, store, send=send)
    try:
        pending = await session.open()
        await send({
            "type": "snapshot",
            "orders": pending,
            "countdowns": {order_id: c.remaining for order_id, c in session.countdowns.items()},
        })

        while True:
            raw = await websocket.receive_json()
            try:
                command = QueueCommand.model_validate(raw)
            except ValidationError as exc:
                await send({"type": "error", "error": "Invalid command", "detail": exc.errors()})
                continue

            try:
                if command.action == "accept":
                    result = await session.accept(command.order_id)
                else:
                    result = await session.reject(command.order_id, command.reason)
            except FoodNowError as exc:
                await send({"type": "error", "orderId": command.order_id, **exc.to_dict(), "error": exc.message})
                continue

            if result is None:
                await send({"type": "error", "orderId": command.order_id, "error": "Order already handled"})

    except WebSocketDisconnect:
        logger.info(f"Queue console for restaurant {restaurant_id} disconnected")
    finally:
        session.close()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(FoodNowError)
async def domain_exception_handler(request: Request, exc: FoodNowError) -> JSONResponse:
    """Domain errors carry their own status code."""
    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.http_status,
        content={
            "success": False,
            "error": exc.message,
            "code": exc.code,
            "detail": jsonable_encoder(exc.context),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "foodnow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
