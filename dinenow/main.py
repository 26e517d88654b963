"""
FastAPI Application Entry Point

DineNow table ordering core.

Endpoints:
    - POST  /api/orders: Place an order for a table
    - GET   /api/orders/history: A customer's order history
    - GET   /api/orders/{order_id}: Order with items
    - PATCH /api/orders/{order_id}/status: Move an order through its lifecycle
    - GET   /api/restaurants/{restaurant_id}/orders: Restaurant order list
    - GET   /api/restaurants/{restaurant_id}/orders/active: Kitchen queue
    - GET   /api/restaurants/{restaurant_id}/menu: Orderable menu
    - GET   /api/restaurants/{restaurant_id}/kitchen-status: Wait estimate for customers
    - GET   /api/restaurants/{restaurant_id}/analytics: Order stats and best sellers
    - GET   /api/menu/search: Menu search
    - GET   /api/menu/items/{item_id}/variants/{variant_id}/price: Current price
    - PUT   /api/menu/items/{item_id}/variants/{variant_id}/default: Default variant
    - PATCH /api/menu/items/{item_id}/toggle: Flip availability
    - PATCH /api/menu/items/{item_id}/active: Retire / restore an item
    - POST  /api/menu/items: Register a menu item
    - GET   /api/kitchen/load/{restaurant_id}: Kitchen load
    - POST  /api/kitchen/calculate/{restaurant_id}: Recompute kitchen load
    - GET   /health: System health check
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dinenow.core.clock import utcnow
from dinenow.core.config import RecomputeMode, Settings, get_settings, setup_logging
from dinenow.core.exceptions import DineNowError, ValidationError
from dinenow.database import Database
from dinenow.models import ItemSize
from dinenow.schemas import (
    ErrorResponse,
    HealthResponse,
    KitchenLoadResponse,
    KitchenStatusResponse,
    MenuItemCreate,
    MenuItemResponse,
    MenuItemStateResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderWithItemsResponse,
    RestaurantAnalyticsResponse,
    RestaurantMenuResponse,
    VariantPriceResponse,
    VariantResponse,
)
from dinenow.services import OrderingService

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_service(request: Request) -> OrderingService:
    return request.app.state.ordering_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Kitchen recompute: {settings.kitchen_recompute_mode.value}")
    logger.info("=" * 60)

    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"⚠️ Configuration problems: {problems}")

    database = Database.from_settings(settings)
    await database.create_all()
    app.state.database = database
    app.state.ordering_service = OrderingService(database, settings)

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await database.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def domain_exception_handler(request: Request, exc: DineNowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError.from_pydantic("Invalid request", exc)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    settings: Settings = request.app.state.settings
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# =============================================================================
# ROUTES
# =============================================================================

def register_routes(app: FastAPI) -> None:

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(
        request: Request,
        settings: Settings = Depends(get_app_settings),
    ) -> HealthResponse:
        """Verify the database and broker are reachable."""
        db_status = "healthy"
        error = await request.app.state.database.ping()
        if error:
            db_status = f"unhealthy: {error}"
            logger.error(f"Database health check failed: {error}")

        redis_status = "healthy"
        try:
            r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
            r.ping()
            r.close()
        except redis.RedisError as e:
            redis_status = f"unhealthy: {str(e)}"
            logger.error(f"Redis health check failed: {e}")

        needs_redis = settings.kitchen_recompute_mode == RecomputeMode.CELERY
        healthy = db_status == "healthy" and (redis_status == "healthy" or not needs_redis)

        return HealthResponse(
            status="operational" if healthy else "degraded",
            database=db_status,
            redis=redis_status,
            kitchen_recompute_mode=settings.kitchen_recompute_mode.value,
            timestamp=utcnow(),
        )

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @app.post(
        "/api/orders",
        response_model=OrderCreateResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Place Order",
    )
    async def create_order(
        order_data: OrderCreate,
        service: OrderingService = Depends(get_service),
    ) -> OrderCreateResponse:
        logger.info(f"Creating order for table {order_data.table_id}: {len(order_data.items)} lines")
        order = await service.create_order(
            order_data.table_id,
            order_data.customer,
            order_data.items,
            order_data.notes,
        )
        return OrderCreateResponse(data=order)

    @app.get(
        "/api/orders/history",
        response_model=OrderListResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Customer Order History",
    )
    async def order_history(
        telegram_id: int = Query(..., gt=0),
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        service: OrderingService = Depends(get_service),
        settings: Settings = Depends(get_app_settings),
    ) -> OrderListResponse:
        orders = await service.list_customer_orders(telegram_id, page, limit)
        return OrderListResponse(
            page=page,
            limit=min(limit or settings.default_page_size, settings.max_page_size),
            orders=orders,
        )

    @app.get(
        "/api/orders/{order_id}",
        response_model=OrderWithItemsResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def get_order(
        order_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> OrderWithItemsResponse:
        return await service.get_order(order_id)

    @app.patch(
        "/api/orders/{order_id}/status",
        response_model=OrderResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Update Order Status",
    )
    async def update_order_status(
        order_id: uuid.UUID,
        update: OrderStatusUpdate,
        service: OrderingService = Depends(get_service),
    ) -> OrderResponse:
        return await service.transition_order_status(order_id, update.status, update.notes)

    # -------------------------------------------------------------------------
    # Restaurants
    # -------------------------------------------------------------------------

    @app.get(
        "/api/restaurants/{restaurant_id}/orders",
        response_model=OrderListResponse,
        responses=ERROR_RESPONSES,
        tags=["Restaurants"],
        summary="List Restaurant Orders",
    )
    async def list_restaurant_orders(
        restaurant_id: uuid.UUID,
        status: Optional[list[str]] = Query(None),
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        service: OrderingService = Depends(get_service),
        settings: Settings = Depends(get_app_settings),
    ) -> OrderListResponse:
        """Newest first. Pass ?status= more than once to match several statuses."""
        orders = await service.list_orders(restaurant_id, status, page, limit)
        return OrderListResponse(
            page=page,
            limit=min(limit or settings.default_page_size, settings.max_page_size),
            orders=orders,
        )

    @app.get(
        "/api/restaurants/{restaurant_id}/orders/active",
        response_model=list[OrderWithItemsResponse],
        tags=["Restaurants"],
        summary="Kitchen Queue",
    )
    async def active_orders(
        restaurant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> list[OrderWithItemsResponse]:
        return await service.get_active_kitchen_orders(restaurant_id)

    @app.get(
        "/api/restaurants/{restaurant_id}/menu",
        response_model=RestaurantMenuResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def restaurant_menu(
        restaurant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> RestaurantMenuResponse:
        return await service.get_restaurant_menu(restaurant_id)

    @app.get(
        "/api/restaurants/{restaurant_id}/kitchen-status",
        response_model=KitchenStatusResponse,
        responses=ERROR_RESPONSES,
        tags=["Restaurants"],
        summary="Kitchen Status",
    )
    async def kitchen_status(
        restaurant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> KitchenStatusResponse:
        return await service.get_kitchen_status(restaurant_id)

    @app.get(
        "/api/restaurants/{restaurant_id}/analytics",
        response_model=RestaurantAnalyticsResponse,
        responses=ERROR_RESPONSES,
        tags=["Restaurants"],
        summary="Restaurant Analytics",
    )
    async def restaurant_analytics(
        restaurant_id: uuid.UUID,
        date_from: date,
        date_to: date,
        limit: Optional[int] = Query(None),
        service: OrderingService = Depends(get_service),
    ) -> RestaurantAnalyticsResponse:
        """Both dates are inclusive UTC calendar days."""
        return await service.get_restaurant_analytics(
            restaurant_id,
            _start_of_day(date_from),
            _start_of_day(date_to + timedelta(days=1)),
            limit,
        )

    # -------------------------------------------------------------------------
    # Menu
    # -------------------------------------------------------------------------

    @app.get(
        "/api/menu/search",
        response_model=list[MenuItemResponse],
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def search_menu(
        restaurant_id: uuid.UUID,
        category_id: Optional[uuid.UUID] = None,
        search: Optional[str] = Query(None, max_length=100),
        size: Optional[ItemSize] = None,
        min_price: Optional[Decimal] = Query(None, ge=0),
        max_price: Optional[Decimal] = Query(None, ge=0),
        available_only: bool = True,
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        service: OrderingService = Depends(get_service),
    ) -> list[MenuItemResponse]:
        return await service.search_menu_items(
            restaurant_id,
            category_id=category_id,
            search=search,
            size=size,
            min_price=min_price,
            max_price=max_price,
            available_only=available_only,
            page=page,
            limit=limit,
        )

    @app.get(
        "/api/menu/items/{item_id}/variants/{variant_id}/price",
        response_model=VariantPriceResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def variant_price(
        item_id: uuid.UUID,
        variant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> VariantPriceResponse:
        return await service.resolve_variant_price(item_id, variant_id)

    @app.put(
        "/api/menu/items/{item_id}/variants/{variant_id}/default",
        response_model=VariantResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def set_default_variant(
        item_id: uuid.UUID,
        variant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> VariantResponse:
        return await service.set_default_variant(item_id, variant_id)

    @app.patch(
        "/api/menu/items/{item_id}/toggle",
        response_model=MenuItemStateResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def toggle_availability(
        item_id: uuid.UUID,
        variant_id: Optional[uuid.UUID] = None,
        service: OrderingService = Depends(get_service),
    ) -> MenuItemStateResponse:
        return await service.toggle_menu_item_availability(item_id, variant_id)

    @app.patch(
        "/api/menu/items/{item_id}/active",
        response_model=MenuItemStateResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def toggle_active(
        item_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> MenuItemStateResponse:
        return await service.toggle_menu_item_active(item_id)

    @app.post(
        "/api/menu/items",
        response_model=MenuItemResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def register_menu_item(
        data: MenuItemCreate,
        service: OrderingService = Depends(get_service),
    ) -> MenuItemResponse:
        return await service.register_menu_item(data)

    # -------------------------------------------------------------------------
    # Kitchen
    # -------------------------------------------------------------------------

    @app.get(
        "/api/kitchen/load/{restaurant_id}",
        response_model=KitchenLoadResponse,
        responses=ERROR_RESPONSES,
        tags=["Kitchen"],
    )
    async def kitchen_load(
        restaurant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> KitchenLoadResponse:
        return await service.get_kitchen_load(restaurant_id)

    @app.post(
        "/api/kitchen/calculate/{restaurant_id}",
        response_model=KitchenLoadResponse,
        responses=ERROR_RESPONSES,
        tags=["Kitchen"],
    )
    async def calculate_kitchen_load(
        restaurant_id: uuid.UUID,
        service: OrderingService = Depends(get_service),
    ) -> KitchenLoadResponse:
        return await service.recompute_kitchen_load(restaurant_id)


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The database and OrderingService are created in the lifespan hook and
    stored on app.state, so tests can place their own there instead.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Table ordering core: orders, menu variants and kitchen load.",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DineNowError, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    register_routes(app)
    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dinenow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
