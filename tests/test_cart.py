import pytest
from sqlalchemy import func, select, update

from storefront import cart, models
from storefront.catalog import CatalogService
from storefront.cache import ProductCache
from storefront.errors import InsufficientStock, InvalidInput, NotFound

pytestmark = pytest.mark.anyio


async def line_count(db, user_id, product_id):
    return await db.scalar(
        select(func.count()).select_from(models.CartLine).where(
            models.CartLine.user_id == user_id, models.CartLine.product_id == product_id
        )
    )


async def test_add_then_exceed_stock_leaves_line_unchanged(db_session, users, make_product):
    alice = users["alice"]
    product = await make_product("Deck A", quantity=5)

    result = await cart.add_to_cart(db_session, alice, product, 3)
    assert result.quantity == 3

    with pytest.raises(InsufficientStock):
        await cart.add_to_cart(db_session, alice, product, 3)

    lines = await cart.get_cart(db_session, alice)
    assert len(lines) == 1
    assert lines[0].quantity == 3


async def test_repeated_add_increments_single_line(db_session, users, make_product):
    alice = users["alice"]
    product = await make_product(quantity=5)

    first = await cart.add_to_cart(db_session, alice, product, 2)
    second = await cart.add_to_cart(db_session, alice, product, 3)
    assert second.id == first.id
    assert second.quantity == 5
    assert await line_count(db_session, alice, product) == 1


@pytest.mark.parametrize("product_id,quantity", [(None, 1), (1, None), (1, 0), (1, -2)])
async def test_add_requires_product_and_positive_quantity(db_session, users, product_id, quantity):
    with pytest.raises(InvalidInput):
        await cart.add_to_cart(db_session, users["alice"], product_id, quantity)


async def test_add_unknown_product(db_session, users):
    with pytest.raises(NotFound):
        await cart.add_to_cart(db_session, users["alice"], 9999, 1)


async def test_add_more_than_stock(db_session, users, make_product):
    product = await make_product(quantity=2)
    with pytest.raises(InsufficientStock):
        await cart.add_to_cart(db_session, users["alice"], product, 3)
    assert await cart.get_cart(db_session, users["alice"]) == []


async def test_concurrent_first_insert_folds_into_existing_line(db_session, users, make_product, monkeypatch):
    alice = users["alice"]
    product = await make_product(quantity=5)
    # Another request already created the line...
    db_session.add(models.CartLine(user_id=alice, product_id=product, quantity=1))
    await db_session.commit()

    # ...but this request's lookup ran before it was visible.
    real_find = cart._find_line
    calls = []

    async def stale_find(db, user_id, product_id):
        calls.append(product_id)
        if len(calls) == 1:
            return None
        return await real_find(db, user_id, product_id)

    monkeypatch.setattr(cart, "_find_line", stale_find)

    result = await cart.add_to_cart(db_session, alice, product, 2)
    assert result.quantity == 3
    assert await line_count(db_session, alice, product) == 1


async def test_increment_checks_stock_at_write_time(db_session, users, make_product):
    alice = users["alice"]
    product = await make_product(quantity=5)
    await cart.add_to_cart(db_session, alice, product, 3)

    # stock drops after the line was written
    await db_session.execute(update(models.Product).where(models.Product.id == product).values(quantity=3))
    await db_session.commit()

    with pytest.raises(InsufficientStock):
        await cart.add_to_cart(db_session, alice, product, 1)


async def test_cart_view_joins_product(db_session, users, make_product):
    alice = users["alice"]
    product = await make_product("Deck A", quantity=5, price="29.99")
    await cart.add_to_cart(db_session, alice, product, 2)

    [line] = await cart.get_cart(db_session, alice)
    assert line.product_id == product
    assert line.title == "Deck A"
    assert line.description == "x"
    assert line.stock == 5
    assert str(line.price) == "29.99"
    assert line.image is None


async def test_carts_are_per_user(db_session, users, make_product):
    product = await make_product(quantity=5)
    await cart.add_to_cart(db_session, users["alice"], product, 5)
    await cart.add_to_cart(db_session, users["bob"], product, 5)
    assert len(await cart.get_cart(db_session, users["alice"])) == 1
    assert len(await cart.get_cart(db_session, users["bob"])) == 1


async def test_update_quantity(db_session, users, make_product):
    alice = users["alice"]
    product = await make_product(quantity=5)
    added = await cart.add_to_cart(db_session, alice, product, 1)

    await cart.update_quantity(db_session, alice, added.id, 4)
    [line] = await cart.get_cart(db_session, alice)
    assert line.quantity == 4

    with pytest.raises(InsufficientStock):
        await cart.update_quantity(db_session, alice, added.id, 6)
    with pytest.raises(InvalidInput):
        await cart.update_quantity(db_session, alice, added.id, 0)

    [line] = await cart.get_cart(db_session, alice)
    assert line.quantity == 4


async def test_update_requires_ownership(db_session, users, make_product):
    product = await make_product(quantity=5)
    added = await cart.add_to_cart(db_session, users["alice"], product, 1)
    with pytest.raises(NotFound):
        await cart.update_quantity(db_session, users["bob"], added.id, 2)
    with pytest.raises(NotFound):
        await cart.update_quantity(db_session, users["alice"], 9999, 2)


async def test_remove_line(db_session, users, make_product):
    product = await make_product(quantity=5)
    added = await cart.add_to_cart(db_session, users["alice"], product, 1)

    with pytest.raises(NotFound):
        await cart.remove_line(db_session, users["bob"], added.id)

    await cart.remove_line(db_session, users["alice"], added.id)
    assert await cart.get_cart(db_session, users["alice"]) == []

    with pytest.raises(NotFound):
        await cart.remove_line(db_session, users["alice"], added.id)


async def test_clear_cart(db_session, users, make_product):
    alice = users["alice"]
    assert await cart.clear_cart(db_session, alice) == 0

    a = await make_product("A", quantity=5)
    b = await make_product("B", quantity=5)
    await cart.add_to_cart(db_session, alice, a, 1)
    await cart.add_to_cart(db_session, alice, b, 1)
    await cart.add_to_cart(db_session, users["bob"], a, 1)

    assert await cart.clear_cart(db_session, alice) == 2
    assert await cart.get_cart(db_session, alice) == []
    assert len(await cart.get_cart(db_session, users["bob"])) == 1


async def test_deleting_product_drops_its_cart_lines(db_session, users, make_product, settings):
    product = await make_product(quantity=5)
    await cart.add_to_cart(db_session, users["alice"], product, 1)

    catalog = CatalogService(ProductCache(), settings)
    await catalog.delete_product(db_session, product)
    assert await cart.get_cart(db_session, users["alice"]) == []
