"""
Catalog service: user sync, tags and products.

Product images follow the same rule as order images: new assets are
uploaded first and rolled back if the write that references them fails.
Assets being replaced or orphaned are deleted best-effort afterwards.
"""
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weinvite.config import Settings
from weinvite.core.compensation import UploadTracker
from weinvite.core.exceptions import InvalidRequest, NotFound, PersistenceError
from weinvite.core.uploads import ImageUpload, upload_images, validate_images
from weinvite.database import crud
from weinvite.database.models import Product, Tag, User
from weinvite.integrations.storage_client import StorageClient

logger = structlog.get_logger(__name__)

THUMBNAILS_FOLDER = "thumbnails"
GALLERY_FOLDER = "gallery"


def normalize_tag_names(names: Iterable[str]) -> List[str]:
    """Trim, lowercase, drop empties and de-duplicate, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for name in names:
        cleaned = str(name).strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def parse_tag_input(raw: Any) -> Optional[List[str]]:
    """
    Read product tags from a form field.

    Accepts a list, a JSON array string, or a comma-separated string.
    ``None`` means the field was not sent.
    """
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        return normalize_tag_names(raw)
    text = str(raw).strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            values = json.loads(text)
        except ValueError as e:
            raise InvalidRequest("tags must be a JSON array or comma-separated string", str(e)) from e
        if not isinstance(values, list):
            raise InvalidRequest("tags must be a JSON array or comma-separated string")
        return normalize_tag_names(values)
    return normalize_tag_names(text.split(","))


def parse_price(raw: Any) -> float:
    try:
        price = float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidRequest("price must be a number", str(raw)) from e
    if price < 0:
        raise InvalidRequest("price must not be negative")
    return price


class CatalogService:
    """Users, tags and products."""

    def __init__(self, storage: StorageClient, settings: Settings) -> None:
        self.storage = storage
        self.bucket = settings.product_images_bucket
        self.max_upload_bytes = settings.max_upload_bytes
        self.max_gallery_images = settings.max_gallery_images

    # Users

    async def sync_user(
        self, db: AsyncSession, sub: Optional[str], name: Optional[str] = None
    ) -> Tuple[User, bool]:
        """
        Make sure the authenticated subject has a user row.

        Returns:
            Tuple[User, bool]: The user and whether it was created by this call
        """
        if not sub:
            raise InvalidRequest("Missing required field: sub")
        try:
            user, created = await crud.find_or_create_user(db, sub, name)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to sync user", str(e)) from e
        logger.info("user_synced", user_id=sub, created=created)
        return user, created

    # Tags

    async def create_tags(self, db: AsyncSession, raw: Any) -> List[Tag]:
        """Find-or-create every tag named in a comma-separated string."""
        if not raw or not isinstance(raw, str):
            raise InvalidRequest("Missing or invalid required field: tags (must be a string)")
        names = normalize_tag_names(raw.split(","))
        if not names:
            raise InvalidRequest("No valid tags provided")
        try:
            tags = await crud.find_or_create_tags(db, names)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to create tags", str(e)) from e
        logger.info("tags_processed", count=len(tags))
        return tags

    async def list_tags(self, db: AsyncSession) -> List[Tuple[Tag, int]]:
        return await crud.list_tags_with_counts(db)

    async def get_tag(self, db: AsyncSession, tag_id: str) -> Tuple[Tag, Sequence[Product]]:
        tag = await crud.get_tag(db, tag_id)
        if tag is None:
            raise NotFound("tag")
        return tag, await crud.list_products_for_tag(db, tag_id)

    async def rename_tag(self, db: AsyncSession, tag_id: str, name: Any) -> Tuple[Tag, int]:
        if not name or not isinstance(name, str):
            raise InvalidRequest("Missing or invalid required field: name (must be a string)")
        tag = await crud.get_tag(db, tag_id)
        if tag is None:
            raise NotFound("tag")

        normalized = name.strip().lower()
        if not normalized:
            raise InvalidRequest("Tag name cannot be empty")
        duplicate = await crud.get_tag_by_name(db, normalized)
        if duplicate is not None and duplicate.id != tag_id:
            raise InvalidRequest("A tag with this name already exists")

        tag.name = normalized
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to update tag", str(e)) from e
        logger.info("tag_renamed", tag_id=tag_id, name=normalized)
        return tag, await crud.count_products_for_tag(db, tag_id)

    async def delete_tag(self, db: AsyncSession, tag_id: str) -> Dict[str, Any]:
        """Delete a tag; products keep existing, only the link goes."""
        tag = await crud.get_tag(db, tag_id)
        if tag is None:
            raise NotFound("tag")
        affected = await crud.count_products_for_tag(db, tag_id)
        try:
            await db.delete(tag)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to delete tag", str(e)) from e
        logger.info("tag_deleted", tag_id=tag_id, products_affected=affected)
        return {
            "message": "Tag deleted successfully",
            "id": tag_id,
            "products_affected": affected,
        }

    # Products

    async def create_product(
        self,
        db: AsyncSession,
        *,
        name: Optional[str],
        price: Any,
        thumbnail: Optional[ImageUpload],
        gallery: Sequence[ImageUpload] = (),
        tags: Any = None,
    ) -> Product:
        """
        Create a product with its thumbnail and gallery images.

        Raises:
            InvalidRequest: Missing name/price/thumbnail, bad image, too many gallery images
            UploadFailed: An upload failed; earlier uploads were cleaned up
            PersistenceError: The insert failed; all uploads were cleaned up
        """
        if not name or price is None or price == "":
            raise InvalidRequest("Missing required fields: name, price")
        parsed_price = parse_price(price)
        if thumbnail is None:
            raise InvalidRequest("Thumbnail image is required")
        self._check_gallery(gallery)
        validate_images([thumbnail], self.max_upload_bytes, field="thumbnail")
        validate_images(gallery, self.max_upload_bytes, field="gallery")
        tag_names = parse_tag_input(tags) or []

        tracker = UploadTracker(self.storage, self.bucket, f"create_product:{name}")
        thumbnail_url = (await upload_images(tracker, [thumbnail], THUMBNAILS_FOLDER))[0]
        gallery_urls = await upload_images(tracker, gallery, GALLERY_FOLDER)

        try:
            product = Product(
                name=name,
                price=parsed_price,
                thumbnail=thumbnail_url,
                gallery_urls=gallery_urls,
            )
            product.tags = await crud.find_or_create_tags(db, tag_names)
            db.add(product)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("product_persist_failed", name=name, error=str(e))
            result = await tracker.compensate()
            error = PersistenceError("Failed to create product", str(e))
            error.compensation = result
            raise error from e

        logger.info(
            "product_created",
            product_id=product.id,
            gallery_images=len(gallery_urls),
            tags=tag_names,
        )
        return product

    async def list_products(
        self, db: AsyncSession, tag: Optional[str] = None
    ) -> List[Tuple[Product, int]]:
        """Products ordered by name, each with its order count."""
        return await crud.list_products_with_counts(db, tag=tag.strip().lower() if tag else None)

    async def get_product(self, db: AsyncSession, product_id: str) -> Tuple[Product, int]:
        product = await crud.get_product(db, product_id)
        if product is None:
            raise NotFound("product")
        return product, await crud.count_orders_for_product(db, product_id)

    async def update_product(
        self,
        db: AsyncSession,
        product_id: str,
        *,
        name: Optional[str] = None,
        price: Any = None,
        thumbnail: Optional[ImageUpload] = None,
        gallery: Optional[Sequence[ImageUpload]] = None,
        tags: Any = None,
    ) -> Product:
        """
        Partially update a product.

        New images replace the old ones. The replaced assets are removed from
        storage only after the update is committed.
        """
        product = await crud.get_product(db, product_id)
        if product is None:
            raise NotFound("product")

        parsed_price = parse_price(price) if price is not None and price != "" else None
        if thumbnail is not None:
            validate_images([thumbnail], self.max_upload_bytes, field="thumbnail")
        if gallery:
            self._check_gallery(gallery)
            validate_images(gallery, self.max_upload_bytes, field="gallery")
        tag_names = parse_tag_input(tags)

        tracker = UploadTracker(self.storage, self.bucket, f"update_product:{product_id}")
        replaced: List[str] = []
        new_thumbnail = None
        new_gallery = None
        if thumbnail is not None:
            new_thumbnail = (await upload_images(tracker, [thumbnail], THUMBNAILS_FOLDER))[0]
        if gallery:
            new_gallery = await upload_images(tracker, gallery, GALLERY_FOLDER)

        try:
            if name:
                product.name = name
            if parsed_price is not None:
                product.price = parsed_price
            if new_thumbnail is not None:
                if product.thumbnail:
                    replaced.append(product.thumbnail)
                product.thumbnail = new_thumbnail
            if new_gallery is not None:
                replaced.extend(product.gallery_urls or [])
                product.gallery_urls = new_gallery
            if tag_names is not None:
                product.tags = await crud.find_or_create_tags(db, tag_names)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("product_update_failed", product_id=product_id, error=str(e))
            result = await tracker.compensate()
            error = PersistenceError("Failed to update product", str(e))
            error.compensation = result
            raise error from e

        await self._delete_assets(replaced, f"update_product:{product_id}")
        logger.info("product_updated", product_id=product_id)

        refreshed = await crud.get_product(db, product_id)
        if refreshed is None:
            raise NotFound("product")
        return refreshed

    async def delete_product(self, db: AsyncSession, product_id: str) -> Dict[str, str]:
        """Delete a product and its orders, then (best-effort) its images."""
        product = await crud.get_product(db, product_id)
        if product is None:
            raise NotFound("product")
        assets = ([product.thumbnail] if product.thumbnail else []) + list(
            product.gallery_urls or []
        )

        try:
            await db.delete(product)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to delete product", str(e)) from e

        await self._delete_assets(assets, f"delete_product:{product_id}")
        logger.info("product_deleted", product_id=product_id)
        return {"message": "Product deleted successfully", "id": product_id}

    def _check_gallery(self, gallery: Sequence[ImageUpload]) -> None:
        if len(gallery) > self.max_gallery_images:
            raise InvalidRequest(f"Maximum {self.max_gallery_images} gallery images allowed")

    async def _delete_assets(self, urls: Sequence[str], operation: str) -> None:
        """Remove stored images by public URL; failures are only logged."""
        keys = []
        for url in urls:
            try:
                keys.append(self.storage.key_from_url(self.bucket, url))
            except ValueError:
                logger.warning("asset_url_not_in_bucket", operation=operation, url=url)
        if not keys:
            return
        try:
            await self.storage.delete(self.bucket, keys)
        except Exception as e:
            logger.error("asset_cleanup_failed", operation=operation, keys=keys, error=str(e))
