from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event

from storefront import models
from storefront.auth import hash_password
from storefront.config import Settings
from storefront.db import init_db, make_engine, make_sessionmaker
from storefront.main import create_app

ADMIN_PASSWORD = "Admin123"
BUYER_PASSWORD = "Buyer123"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        checkpoint_interval_seconds=0,
        admin_password=ADMIN_PASSWORD,
        log_level="WARNING",
    )


# -------------------- API fixtures --------------------

@pytest.fixture
def client(settings) -> Generator:
    # Fresh app per test: its lifespan creates the schema and seeds the admin
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(client, settings) -> dict:
    r = client.post("/api/login", json={"username": settings.admin_username, "password": ADMIN_PASSWORD})
    assert r.status_code == 200
    return bearer(r.json()["token"])


@pytest.fixture
def register_buyer(client):
    def _register(username: str = "buyer1") -> dict:
        r = client.post(
            "/api/register",
            json={
                "fullname": f"{username} Fullname",
                "username": username,
                "email": f"{username}@example.com",
                "password": BUYER_PASSWORD,
            },
        )
        assert r.status_code == 200, r.text
        return bearer(r.json()["token"])

    return _register


@pytest.fixture
def buyer_headers(register_buyer) -> dict:
    return register_buyer("buyer1")


# -------------------- Service fixtures --------------------

@pytest.fixture
async def engine(settings):
    engine = make_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine):
    async with make_sessionmaker(engine)() as session:
        yield session


@pytest.fixture
def product_reads(engine) -> Generator:
    """Count SELECT statements that read the products table."""
    counter = {"n": 0}

    def count(conn, cursor, statement, parameters, context, executemany):
        sql = statement.lower()
        if sql.lstrip().startswith("select") and "from products" in sql:
            counter["n"] += 1

    event.listen(engine.sync_engine, "before_cursor_execute", count)
    yield counter
    event.remove(engine.sync_engine, "before_cursor_execute", count)


@pytest.fixture
async def users(db_session):
    admin = models.User(
        username="root", email="root@example.com", fullname="Root Admin",
        password_hash=hash_password(ADMIN_PASSWORD), role=models.Role.admin,
    )
    alice = models.User(
        username="alice", email="alice@example.com", fullname="Alice Buyer",
        password_hash=hash_password(BUYER_PASSWORD), role=models.Role.buyer,
    )
    bob = models.User(
        username="bob", email="bob@example.com", fullname="Bob Buyer",
        password_hash=hash_password(BUYER_PASSWORD), role=models.Role.buyer,
    )
    db_session.add_all([admin, alice, bob])
    await db_session.commit()
    # ids only: a service-level rollback expires loaded instances
    return {"admin": admin.id, "alice": alice.id, "bob": bob.id}


@pytest.fixture
def make_product(db_session, users):
    async def _make(title: str = "Deck A", quantity: int = 5, price: str = "29.99") -> int:
        product = models.Product(
            title=title, description="x", quantity=quantity, price=Decimal(price),
            admin_id=users["admin"],
        )
        db_session.add(product)
        await db_session.commit()
        return product.id

    return _make
