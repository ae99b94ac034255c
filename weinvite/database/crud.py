"""
Data-access functions for users, tags, products and orders.

Every function takes the request's ``AsyncSession``; commits are left to
the caller unless the function says otherwise.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from weinvite.database.models import Order, Product, Tag, User, product_tags


# Users


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def find_or_create_user(
    db: AsyncSession, user_id: str, name: Optional[str] = None
) -> Tuple[User, bool]:
    """
    Return the user with ``user_id``, creating it if missing.

    An existing row always wins and is returned untouched. A concurrent
    insert of the same id is resolved by re-reading the winner.

    Returns:
        Tuple[User, bool]: The user and whether it was created here
    """
    existing = await db.get(User, user_id)
    if existing is not None:
        return existing, False

    try:
        async with db.begin_nested():
            user = User(id=user_id, name=name, role="customer")
            db.add(user)
        return user, True
    except IntegrityError:
        winner = await db.get(User, user_id, populate_existing=True)
        if winner is None:
            raise
        return winner, False


# Tags


async def get_tag(db: AsyncSession, tag_id: str) -> Optional[Tag]:
    return await db.get(Tag, tag_id)


async def get_tag_by_name(db: AsyncSession, name: str) -> Optional[Tag]:
    result = await db.execute(select(Tag).where(Tag.name == name))
    return result.scalar_one_or_none()


async def find_or_create_tags(db: AsyncSession, names: Iterable[str]) -> List[Tag]:
    """
    Resolve normalized tag names to rows, creating the missing ones.

    Order of ``names`` is preserved; existing rows win.
    """
    tags: List[Tag] = []
    for name in names:
        tag = await get_tag_by_name(db, name)
        if tag is None:
            try:
                async with db.begin_nested():
                    tag = Tag(name=name)
                    db.add(tag)
            except IntegrityError:
                tag = await get_tag_by_name(db, name)
                if tag is None:
                    raise
        tags.append(tag)
    return tags


async def count_products_for_tag(db: AsyncSession, tag_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(product_tags).where(product_tags.c.tag_id == tag_id)
    )
    return int(result.scalar_one())


async def list_tags_with_counts(db: AsyncSession) -> List[Tuple[Tag, int]]:
    """List all tags ordered by name with the number of tagged products."""
    stmt = (
        select(Tag, func.count(product_tags.c.product_id))
        .outerjoin(product_tags, product_tags.c.tag_id == Tag.id)
        .group_by(Tag.id)
        .order_by(Tag.name.asc())
    )
    result = await db.execute(stmt)
    return [(tag, int(count)) for tag, count in result.all()]


async def list_products_for_tag(db: AsyncSession, tag_id: str) -> Sequence[Product]:
    stmt = (
        select(Product)
        .join(product_tags, product_tags.c.product_id == Product.id)
        .where(product_tags.c.tag_id == tag_id)
        .order_by(Product.name.asc())
    )
    result = await db.execute(stmt)
    return result.scalars().all()


# Products


async def get_product(db: AsyncSession, product_id: str) -> Optional[Product]:
    return await db.get(Product, product_id)


async def list_products_with_counts(
    db: AsyncSession, tag: Optional[str] = None
) -> List[Tuple[Product, int]]:
    """List products ordered by name with their order counts."""
    order_counts = (
        select(Order.product_id, func.count(Order.id).label("order_count"))
        .group_by(Order.product_id)
        .subquery()
    )
    stmt = (
        select(Product, func.coalesce(order_counts.c.order_count, 0))
        .outerjoin(order_counts, order_counts.c.product_id == Product.id)
        .order_by(Product.name.asc())
    )
    if tag:
        stmt = stmt.where(Product.tags.any(Tag.name == tag))
    result = await db.execute(stmt)
    return [(product, int(count)) for product, count in result.all()]


async def count_orders_for_product(db: AsyncSession, product_id: str) -> int:
    result = await db.execute(
        select(func.count(Order.id)).where(Order.product_id == product_id)
    )
    return int(result.scalar_one())


# Orders


async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    """
    Load an order with its product (and tags) and user.

    Always re-reads the row so callers see the committed state after an
    update issued through a bulk statement.
    """
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def order_exists(db: AsyncSession, order_id: str) -> bool:
    result = await db.execute(select(Order.id).where(Order.id == order_id))
    return result.scalar_one_or_none() is not None


async def list_orders(
    db: AsyncSession,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
) -> Sequence[Order]:
    """
    List orders, optionally filtered by user and/or status.

    Sorted by the literal text of ``status`` ascending, so
    ``dibatalkan`` < ``diterima`` < ``pending``.
    """
    stmt = select(Order)
    if user_id:
        stmt = stmt.where(Order.user_id == user_id)
    if status:
        stmt = stmt.where(Order.status == status)
    stmt = stmt.order_by(Order.status.asc(), Order.created_at.asc())
    result = await db.execute(stmt)
    return result.scalars().all()


async def insert_order(
    db: AsyncSession,
    *,
    order_id: str,
    user_id: str,
    product_id: str,
    status: str,
    wedding_info: Optional[Dict[str, Any]] = None,
    snap_token: Optional[str] = None,
    image_urls: Optional[List[str]] = None,
) -> None:
    """Insert an order and commit. Constraint violations propagate."""
    order = Order(
        id=order_id,
        user_id=user_id,
        product_id=product_id,
        status=status,
        wedding_info=wedding_info or {},
        snap_token=snap_token,
        image_urls=image_urls or [],
    )
    db.add(order)
    await db.commit()


async def update_order_fields(
    db: AsyncSession, order_id: str, values: Dict[str, Any]
) -> int:
    """
    Write absolute values onto an order and commit.

    Returns:
        int: Number of rows updated (0 when the order does not exist)
    """
    stmt = update(Order).where(Order.id == order_id).values(**values)
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount


async def delete_order(db: AsyncSession, order_id: str) -> int:
    result = await db.execute(delete(Order).where(Order.id == order_id))
    await db.commit()
    return result.rowcount
