"""Per-user cart lines with stock-bounded quantity updates.

Cart reads always go to the store: a stale quantity or stock value would lead
to a wrong stock decision.
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, schemas
from .errors import InsufficientStock, InvalidInput, NotFound

logger = logging.getLogger(__name__)

CartLine = models.CartLine
Product = models.Product


async def get_cart(db: AsyncSession, user_id: int) -> List[schemas.CartLineView]:
    result = await db.execute(
        select(
            CartLine.id,
            CartLine.product_id,
            CartLine.quantity,
            Product.title,
            Product.description,
            Product.quantity.label("stock"),
            Product.price,
            Product.image,
        )
        .join(Product, CartLine.product_id == Product.id)
        .where(CartLine.user_id == user_id)
        .order_by(CartLine.created_at.desc(), CartLine.id.desc())
    )
    return [schemas.CartLineView.model_validate(dict(row)) for row in result.mappings()]


async def add_to_cart(
    db: AsyncSession, user_id: int, product_id: Optional[int], quantity: Optional[int]
) -> schemas.CartAddResult:
    if not product_id or quantity is None or quantity < 1:
        raise InvalidInput("product_id and a quantity of at least 1 are required")

    stock = await db.scalar(select(Product.quantity).where(Product.id == product_id))
    if stock is None:
        raise NotFound("product not found")
    if quantity > stock:
        raise InsufficientStock()

    line_id = await _find_line(db, user_id, product_id)
    if line_id is not None:
        return await _increment_line(db, line_id, product_id, quantity)

    line = CartLine(user_id=user_id, product_id=product_id, quantity=quantity)
    db.add(line)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # Another request inserted the (user, product) line between our read
        # and our insert; fold this request into that line instead.
        line_id = await _find_line(db, user_id, product_id)
        if line_id is None:
            raise
        logger.info("cart insert raced for user=%s product=%s, incrementing", user_id, product_id)
        return await _increment_line(db, line_id, product_id, quantity)
    return schemas.CartAddResult(message="product added to cart", id=line.id, quantity=quantity)


async def _find_line(db: AsyncSession, user_id: int, product_id: int) -> Optional[int]:
    return await db.scalar(
        select(CartLine.id).where(CartLine.user_id == user_id, CartLine.product_id == product_id)
    )


async def _increment_line(db: AsyncSession, line_id: int, product_id: int, quantity: int) -> schemas.CartAddResult:
    # Single conditional statement: the stock bound is checked against the
    # product row at write time, not against the earlier read.
    stock = select(Product.quantity).where(Product.id == product_id).scalar_subquery()
    result = await db.execute(
        update(CartLine)
        .where(CartLine.id == line_id, CartLine.quantity + quantity <= stock)
        .values(quantity=CartLine.quantity + quantity)
        .returning(CartLine.quantity)
        .execution_options(synchronize_session=False)
    )
    new_quantity = result.scalar_one_or_none()
    if new_quantity is None:
        await db.rollback()
        raise InsufficientStock("insufficient stock for the requested quantity")
    await db.commit()
    return schemas.CartAddResult(message="cart item updated", id=line_id, quantity=new_quantity)


async def update_quantity(db: AsyncSession, user_id: int, line_id: int, quantity: Optional[int]) -> None:
    if quantity is None or quantity < 1:
        raise InvalidInput("a quantity of at least 1 is required")

    row = (
        await db.execute(
            select(CartLine.id, Product.quantity.label("stock"))
            .join(Product, CartLine.product_id == Product.id)
            .where(CartLine.id == line_id, CartLine.user_id == user_id)
        )
    ).first()
    if row is None:
        raise NotFound("cart item not found")
    if quantity > row.stock:
        raise InsufficientStock()

    await db.execute(
        update(CartLine)
        .where(CartLine.id == line_id, CartLine.user_id == user_id)
        .values(quantity=quantity)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def remove_line(db: AsyncSession, user_id: int, line_id: int) -> None:
    result = await db.execute(
        delete(CartLine)
        .where(CartLine.id == line_id, CartLine.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound("cart item not found")
    await db.commit()


async def clear_cart(db: AsyncSession, user_id: int) -> int:
    """Delete every line of the user's cart; an already empty cart is fine."""
    result = await db.execute(
        delete(CartLine).where(CartLine.user_id == user_id).execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
