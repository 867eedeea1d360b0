import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import accounts, cart, schemas
from .auth import create_access_token, get_principal, require_admin, require_buyer
from .cache import ProductCache
from .catalog import CatalogService
from .config import Settings, load_settings
from .db import checkpoint_periodically, close_db, init_db, is_sqlite, make_engine, make_sessionmaker
from .errors import Internal, StorefrontError
from .images import discard_image, has_upload, save_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# Dependency to get DB session per request

async def get_db(request: Request):
    async with request.app.state.sessionmaker() as db:
        yield db


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def issue_token(principal: schemas.Principal, settings: Settings) -> str:
    return create_access_token(principal, settings.jwt_secret, settings.token_ttl_seconds)


# -------------------- Auth --------------------

@router.post("/register", response_model=schemas.AuthResponse)
async def register(
    payload: schemas.RegisterRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await accounts.create_user(db, payload)
    principal = schemas.Principal.model_validate(user)
    return schemas.AuthResponse(message="user created", token=issue_token(principal, settings), user=principal)


@router.post("/login", response_model=schemas.AuthResponse)
async def login(
    payload: schemas.LoginRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await accounts.authenticate(db, payload.username, payload.password)
    principal = schemas.Principal.model_validate(user)
    return schemas.AuthResponse(message="login successful", token=issue_token(principal, settings), user=principal)


@router.get("/verify", response_model=schemas.VerifyResponse)
async def verify(principal: schemas.Principal = Depends(get_principal)):
    return schemas.VerifyResponse(user=principal)


# -------------------- Products --------------------

@router.get("/products", response_model=List[schemas.ProductRead])
async def list_products(
    search: Optional[str] = Query(default=None, max_length=200),
    principal: schemas.Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
):
    return await catalog.list_products(db, search)


@router.post("/products", response_model=schemas.ProductMutationResponse)
async def create_product(
    titulo: Optional[str] = Form(default=None),
    detalle: Optional[str] = Form(default=None),
    cantidad: Optional[str] = Form(default=None),
    precio: Optional[str] = Form(default=None),
    imagen: Optional[UploadFile] = File(default=None),
    admin: schemas.Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    fields = catalog.validate_fields(titulo, detalle, cantidad, precio)
    image = await save_image(imagen, settings) if has_upload(imagen) else None
    try:
        product = await catalog.create_product(db, fields, image, admin.id)
    except Exception:
        if image:
            discard_image(image, settings)
        raise
    return schemas.ProductMutationResponse(message="product created", product=product)


@router.put("/products/{product_id}", response_model=schemas.ProductMutationResponse)
async def update_product(
    product_id: int,
    titulo: Optional[str] = Form(default=None),
    detalle: Optional[str] = Form(default=None),
    cantidad: Optional[str] = Form(default=None),
    precio: Optional[str] = Form(default=None),
    imagen: Optional[UploadFile] = File(default=None),
    admin: schemas.Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    fields = catalog.validate_fields(titulo, detalle, cantidad, precio)
    image = await save_image(imagen, settings) if has_upload(imagen) else None
    try:
        product = await catalog.update_product(db, product_id, fields, image)
    except Exception:
        if image:
            discard_image(image, settings)
        raise
    return schemas.ProductMutationResponse(message="product updated", product=product)


@router.delete("/products/{product_id}", response_model=schemas.MessageResponse)
async def delete_product(
    product_id: int,
    admin: schemas.Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog),
):
    await catalog.delete_product(db, product_id)
    return schemas.MessageResponse(message="product deleted")


# -------------------- Cart --------------------

@router.get("/cart", response_model=List[schemas.CartLineView])
async def get_cart(buyer: schemas.Principal = Depends(require_buyer), db: AsyncSession = Depends(get_db)):
    return await cart.get_cart(db, buyer.id)


@router.post("/cart", response_model=schemas.CartAddResult)
async def add_to_cart(
    payload: schemas.CartAdd,
    buyer: schemas.Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    return await cart.add_to_cart(db, buyer.id, payload.product_id, payload.quantity)


@router.put("/cart/{line_id}", response_model=schemas.MessageResponse)
async def update_cart_line(
    line_id: int,
    payload: schemas.CartUpdate,
    buyer: schemas.Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    await cart.update_quantity(db, buyer.id, line_id, payload.quantity)
    return schemas.MessageResponse(message="cart updated")


@router.delete("/cart/{line_id}", response_model=schemas.MessageResponse)
async def remove_cart_line(
    line_id: int,
    buyer: schemas.Principal = Depends(require_buyer),
    db: AsyncSession = Depends(get_db),
):
    await cart.remove_line(db, buyer.id, line_id)
    return schemas.MessageResponse(message="product removed from cart")


@router.delete("/cart", response_model=schemas.MessageResponse)
async def clear_cart(buyer: schemas.Principal = Depends(require_buyer), db: AsyncSession = Depends(get_db)):
    await cart.clear_cart(db, buyer.id)
    return schemas.MessageResponse(message="cart emptied")


# -------------------- Error rendering --------------------

def validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid input"
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
    ctx_error = (err.get("ctx") or {}).get("error")
    msg = str(ctx_error) if ctx_error else err.get("msg", "invalid input")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": validation_message(exc)})


async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("store failure on %s %s", request.method, request.url.path, exc_info=exc)
    internal = Internal()
    return JSONResponse(status_code=internal.status_code, content={"detail": internal.message})


# -------------------- Application --------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = make_engine(settings.database_url)
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)
    await init_db(engine)
    async with app.state.sessionmaker() as db:
        await accounts.ensure_admin(db, settings)

    checkpointer = None
    if is_sqlite(settings.database_url) and settings.checkpoint_interval_seconds > 0:
        checkpointer = asyncio.create_task(
            checkpoint_periodically(engine, settings.checkpoint_interval_seconds)
        )
    logger.info("storefront started (database: %s)", engine.url)
    try:
        yield
    finally:
        logger.info("shutting down")
        if checkpointer is not None:
            checkpointer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await checkpointer
        await close_db(engine)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="Skateboard Shop API", lifespan=lifespan)
    app.state.settings = settings
    app.state.catalog = CatalogService(ProductCache(), settings)

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
    return app


app = create_app()
