"""
API routes for orders, payments and the catalog.

Domain errors raised by the workflows are rendered by the exception
handlers registered in ``weinvite.api.main``.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from weinvite.core.catalog import CatalogService
from weinvite.core.order_workflow import OrderWorkflow, parse_wedding_info
from weinvite.core.payment_workflow import PaymentWorkflow
from weinvite.core.uploads import ImageUpload
from weinvite.database.connection import get_db
from weinvite.monitoring.health import HealthCheck

from .dependencies import (
    get_catalog,
    get_health_check,
    get_order_workflow,
    get_payment_workflow,
)
from .schemas import (
    CreateTagsRequest,
    CreateTagsResponse,
    CreateTransactionRequest,
    CreateTransactionResponse,
    DeleteResponse,
    DeleteTagResponse,
    HealthCheckResponse,
    NotificationResponse,
    OrderRead,
    OrderUpdateRequest,
    ProductRead,
    ProductSummary,
    ProductWithCount,
    SyncUserRequest,
    SyncUserResponse,
    TagDetail,
    TagRead,
    TagWithCount,
    TransactionStatusResponse,
    UpdateTagRequest,
    UserRead,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
payment_router = APIRouter(prefix="/payment", tags=["payment"])
auth_router = APIRouter(prefix="/auth", tags=["auth"])
tag_router = APIRouter(prefix="/tags", tags=["tags"])
product_router = APIRouter(prefix="/products", tags=["products"])
monitoring_router = APIRouter(tags=["monitoring"])


async def _read_files(files: Optional[List[UploadFile]]) -> List[ImageUpload]:
    """Read multipart files into memory, skipping empty file fields."""
    uploads = []
    for upload in files or []:
        if not upload.filename:
            continue
        uploads.append(
            ImageUpload(
                content=await upload.read(),
                content_type=upload.content_type or "application/octet-stream",
                filename=upload.filename,
            )
        )
    return uploads


def _product_with_count(product: Any, order_count: int) -> ProductWithCount:
    data = ProductRead.model_validate(product).model_dump()
    return ProductWithCount(**data, order_count=order_count)


def _tag_with_count(tag: Any, product_count: int) -> TagWithCount:
    return TagWithCount(id=tag.id, name=tag.name, product_count=product_count)


# Orders


@order_router.post(
    "",
    response_model=OrderRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Create an order with one or more uploaded images",
)
async def create_order(
    order_id: Optional[str] = Form(default=None, alias="orderId"),
    user_id: Optional[str] = Form(default=None, alias="userId"),
    product_id: Optional[str] = Form(default=None, alias="productId"),
    wedding_info: Optional[str] = Form(default=None, alias="weddingInfo"),
    snap_token: Optional[str] = Form(default=None, alias="snapToken"),
    images: Optional[List[UploadFile]] = File(default=None),
    image: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderRead:
    """
    Create a new order.

    Accepts the images under ``images`` and, for older clients, a single
    file under ``image``. If anything fails after an upload, the uploaded
    files are deleted again before the error is returned.
    """
    files = await _read_files(images)
    files += await _read_files([image] if image is not None else None)

    logger.info(
        "api_create_order_request",
        order_id=order_id,
        user_id=user_id,
        product_id=product_id,
        images=len(files),
    )

    order = await workflow.create_order(
        db,
        order_id=order_id,
        user_id=user_id,
        product_id=product_id,
        images=files,
        wedding_info=parse_wedding_info(wedding_info),
        snap_token=snap_token or None,
    )
    return OrderRead.model_validate(order)


@order_router.get(
    "",
    response_model=List[OrderRead],
    summary="List orders",
    description="List all orders, optionally filtered by user and status",
)
async def list_orders(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    order_status: Optional[str] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> List[OrderRead]:
    orders = await workflow.list_orders(db, user_id=user_id, status=order_status)
    return [OrderRead.model_validate(order) for order in orders]


@order_router.get(
    "/user/{user_id}",
    response_model=List[OrderRead],
    summary="List a user's orders",
)
async def list_user_orders(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> List[OrderRead]:
    orders = await workflow.list_orders_for_user(db, user_id)
    return [OrderRead.model_validate(order) for order in orders]


@order_router.get(
    "/{order_id}",
    response_model=OrderRead,
    summary="Get an order",
)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderRead:
    return OrderRead.model_validate(await workflow.get_order(db, order_id))


@order_router.put(
    "/{order_id}",
    response_model=OrderRead,
    summary="Update an order",
    description="Update status, wedding info and/or snap token",
)
async def update_order(
    order_id: str,
    request: OrderUpdateRequest,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> OrderRead:
    changes = request.model_dump(exclude_unset=True)
    order = await workflow.update_order(db, order_id, changes)
    return OrderRead.model_validate(order)


@order_router.delete(
    "/{order_id}",
    response_model=DeleteResponse,
    summary="Delete an order",
)
async def delete_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    workflow: OrderWorkflow = Depends(get_order_workflow),
) -> Dict[str, str]:
    return await workflow.delete_order(db, order_id)


# Payment


@payment_router.post(
    "/transactions",
    response_model=CreateTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment transaction",
    description="Open a Midtrans Snap session and record the pending order",
)
async def create_transaction(
    request: CreateTransactionRequest,
    db: AsyncSession = Depends(get_db),
    workflow: PaymentWorkflow = Depends(get_payment_workflow),
) -> CreateTransactionResponse:
    logger.info(
        "api_create_transaction_request",
        order_id=request.order_id,
        product_id=request.product_id,
        user_id=request.user_id,
    )
    result = await workflow.create_transaction(
        db,
        order_id=request.order_id,
        product_id=request.product_id,
        user_id=request.user_id,
        wedding_info=request.wedding_info,
    )
    return CreateTransactionResponse(
        session=result["session"],
        order=OrderRead.model_validate(result["order"]),
    )


@payment_router.post(
    "/notification",
    response_model=NotificationResponse,
    summary="Midtrans notification",
    description="HTTP notification endpoint called by Midtrans on every status change",
)
async def payment_notification(
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    workflow: PaymentWorkflow = Depends(get_payment_workflow),
) -> NotificationResponse:
    """
    Apply a Midtrans notification to its order.

    Midtrans retries until it gets a 2xx, and applying the same
    notification twice leaves the order unchanged.
    """
    logger.info(
        "api_notification_received",
        order_id=payload.get("order_id"),
        transaction_status=payload.get("transaction_status"),
    )
    order = await workflow.handle_notification(db, payload)
    return NotificationResponse(
        message="Notification processed successfully",
        order=OrderRead.model_validate(order),
    )


@payment_router.get(
    "/transactions/{order_id}/status",
    response_model=TransactionStatusResponse,
    summary="Get transaction status",
    description="Local order plus the live Midtrans transaction status",
)
async def transaction_status(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    workflow: PaymentWorkflow = Depends(get_payment_workflow),
) -> TransactionStatusResponse:
    result = await workflow.get_transaction_status(db, order_id)
    return TransactionStatusResponse(
        gateway_status=result["gateway_status"],
        order=OrderRead.model_validate(result["order"]),
    )


# Auth


@auth_router.post(
    "/sync-user",
    response_model=SyncUserResponse,
    summary="Sync the authenticated user",
    description="Create the user row on first login; existing users are returned as-is",
)
async def sync_user(
    request: SyncUserRequest,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> SyncUserResponse:
    user, created = await catalog.sync_user(db, request.sub, request.name)
    return SyncUserResponse(user=UserRead.model_validate(user), is_new_user=created)


# Tags


@tag_router.post(
    "",
    response_model=CreateTagsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create tags",
    description="Create tags from a comma-separated string; existing tags are reused",
)
async def create_tags(
    request: CreateTagsRequest,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> CreateTagsResponse:
    tags = await catalog.create_tags(db, request.tags)
    return CreateTagsResponse(
        message=f"Successfully processed {len(tags)} tag(s)",
        tags=[TagRead.model_validate(tag) for tag in tags],
    )


@tag_router.get("", response_model=List[TagWithCount], summary="List tags")
async def list_tags(
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> List[TagWithCount]:
    return [_tag_with_count(tag, count) for tag, count in await catalog.list_tags(db)]


@tag_router.get("/{tag_id}", response_model=TagDetail, summary="Get a tag with its products")
async def get_tag(
    tag_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> TagDetail:
    tag, products = await catalog.get_tag(db, tag_id)
    return TagDetail(
        id=tag.id,
        name=tag.name,
        product_count=len(products),
        products=[ProductSummary.model_validate(product) for product in products],
    )


@tag_router.put("/{tag_id}", response_model=TagWithCount, summary="Rename a tag")
async def update_tag(
    tag_id: str,
    request: UpdateTagRequest,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> TagWithCount:
    tag, count = await catalog.rename_tag(db, tag_id, request.name)
    return _tag_with_count(tag, count)


@tag_router.delete("/{tag_id}", response_model=DeleteTagResponse, summary="Delete a tag")
async def delete_tag(
    tag_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> DeleteTagResponse:
    return DeleteTagResponse(**await catalog.delete_tag(db, tag_id))


# Products


@product_router.post(
    "",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
    description="Create a product with a thumbnail, up to five gallery images and tags",
)
async def create_product(
    name: Optional[str] = Form(default=None),
    price: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None),
    thumbnail: Optional[UploadFile] = File(default=None),
    gallery: Optional[List[UploadFile]] = File(default=None),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> ProductRead:
    thumbnails = await _read_files([thumbnail] if thumbnail is not None else None)
    product = await catalog.create_product(
        db,
        name=name,
        price=price,
        thumbnail=thumbnails[0] if thumbnails else None,
        gallery=await _read_files(gallery),
        tags=tags,
    )
    return ProductRead.model_validate(product)


@product_router.get(
    "",
    response_model=List[ProductWithCount],
    summary="List products",
    description="List products by name, optionally only those with a given tag",
)
async def list_products(
    tag: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> List[ProductWithCount]:
    rows = await catalog.list_products(db, tag=tag)
    return [_product_with_count(product, count) for product, count in rows]


@product_router.get("/{product_id}", response_model=ProductWithCount, summary="Get a product")
async def get_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> ProductWithCount:
    product, count = await catalog.get_product(db, product_id)
    return _product_with_count(product, count)


@product_router.put(
    "/{product_id}",
    response_model=ProductRead,
    summary="Update a product",
    description="Partially update a product; new images replace the old ones",
)
async def update_product(
    product_id: str,
    name: Optional[str] = Form(default=None),
    price: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None),
    thumbnail: Optional[UploadFile] = File(default=None),
    gallery: Optional[List[UploadFile]] = File(default=None),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> ProductRead:
    thumbnails = await _read_files([thumbnail] if thumbnail is not None else None)
    gallery_files = await _read_files(gallery)
    product = await catalog.update_product(
        db,
        product_id,
        name=name,
        price=price,
        thumbnail=thumbnails[0] if thumbnails else None,
        gallery=gallery_files or None,
        tags=tags,
    )
    return ProductRead.model_validate(product)


@product_router.delete(
    "/{product_id}",
    response_model=DeleteResponse,
    summary="Delete a product",
    description="Delete a product and its orders; stored images are removed best-effort",
)
async def delete_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
) -> Dict[str, str]:
    return await catalog.delete_product(db, product_id)


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
