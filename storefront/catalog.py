import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, schemas
from .cache import ProductCache
from .config import Settings
from .errors import InvalidInput, NotFound
from .utils import round_price, sanitize_text

logger = logging.getLogger(__name__)

NEWEST_FIRST = (models.Product.created_at.desc(), models.Product.id.desc())


def parse_quantity(raw, max_stock: int) -> int:
    if raw is None or str(raw).strip() == "":
        raise InvalidInput("cantidad is required")
    try:
        quantity = int(str(raw).strip())
    except ValueError:
        raise InvalidInput("cantidad must be a whole number")
    if quantity < 0:
        raise InvalidInput("cantidad must be non-negative")
    if quantity > max_stock:
        raise InvalidInput(f"cantidad must not exceed {max_stock}")
    return quantity


def parse_price(raw, max_price: Decimal) -> Decimal:
    if raw is None or str(raw).strip() == "":
        raise InvalidInput("precio is required")
    try:
        price = Decimal(str(raw).strip())
    except InvalidOperation:
        raise InvalidInput("precio must be a number")
    if not price.is_finite():
        raise InvalidInput("precio must be a number")
    try:
        price = round_price(price)
    except InvalidOperation:
        # too many digits to hold at cent precision
        raise InvalidInput(f"precio must be between 0 and {max_price}")
    if price < 0:
        raise InvalidInput("precio must be non-negative")
    if price > max_price:
        raise InvalidInput(f"precio must not exceed {max_price}")
    return price


class CatalogService:
    """Product CRUD with a time-windowed cache over the unfiltered listing.

    Search queries always go to the store and never touch the cache. Every
    successful mutation drops the cached list, so the next unfiltered read
    reloads it.
    """

    def __init__(self, cache: ProductCache, settings: Settings):
        self.cache = cache
        self.settings = settings

    def validate_fields(self, titulo, detalle, cantidad, precio) -> schemas.ProductFields:
        title = sanitize_text(titulo)
        description = sanitize_text(detalle)
        if not title:
            raise InvalidInput("titulo is required")
        if not description:
            raise InvalidInput("detalle is required")
        return schemas.ProductFields(
            title=title,
            description=description,
            quantity=parse_quantity(cantidad, self.settings.max_stock),
            price=parse_price(precio, self.settings.max_price),
        )

    async def list_products(self, db: AsyncSession, search: Optional[str] = None) -> List[schemas.ProductRead]:
        term = (search or "").strip()
        if term:
            result = await db.execute(
                select(models.Product)
                .filter(models.Product.title.icontains(term, autoescape=True))
                .order_by(*NEWEST_FIRST)
            )
            return [schemas.ProductRead.model_validate(p) for p in result.scalars().all()]

        entry = self.cache.get()
        if entry is not None and self.cache.age(entry) < self.settings.cache_ttl_seconds:
            return list(entry.products)

        generation = self.cache.generation
        result = await db.execute(select(models.Product).order_by(*NEWEST_FIRST))
        products = [schemas.ProductRead.model_validate(p) for p in result.scalars().all()]
        if self.cache.set(products, generation) is None:
            logger.debug("product list changed while loading, not cached")
            return products
        logger.debug("product cache repopulated with %d products", len(products))
        return products

    async def create_product(
        self, db: AsyncSession, fields: schemas.ProductFields, image: Optional[str], admin_id: int
    ) -> schemas.ProductRead:
        product = models.Product(
            title=fields.title,
            description=fields.description,
            quantity=fields.quantity,
            price=fields.price,
            image=image,
            admin_id=admin_id,
        )
        db.add(product)
        await db.commit()
        await db.refresh(product)
        self._invalidate()
        return schemas.ProductRead.model_validate(product)

    async def update_product(
        self, db: AsyncSession, product_id: int, fields: schemas.ProductFields, image: Optional[str] = None
    ) -> schemas.ProductRead:
        product = await db.get(models.Product, product_id)
        if not product:
            raise NotFound("product not found")
        product.title = fields.title
        product.description = fields.description
        product.quantity = fields.quantity
        product.price = fields.price
        # keep the current image unless a new one was uploaded
        if image:
            product.image = image
        await db.commit()
        await db.refresh(product)
        self._invalidate()
        return schemas.ProductRead.model_validate(product)

    async def delete_product(self, db: AsyncSession, product_id: int) -> None:
        result = await db.execute(delete(models.Product).where(models.Product.id == product_id))
        if result.rowcount == 0:
            await db.rollback()
            raise NotFound("product not found")
        await db.commit()
        self._invalidate()

    def _invalidate(self) -> None:
        self.cache.invalidate()
        logger.debug("product cache invalidated")
