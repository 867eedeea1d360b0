from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .db import Base


class Role(str, PyEnum):
    admin = "admin"
    buyer = "buyer"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    # Nullable for accounts migrated from the legacy schema
    fullname = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(Role, native_enum=False, length=16), nullable=False, default=Role.buyer)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    products = relationship("Product", back_populates="admin")
    cart_lines = relationship("CartLine", back_populates="user", passive_deletes=True)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    # opaque identifier returned by the image store
    image = Column(String, nullable=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    admin = relationship("User", back_populates="products")
    cart_lines = relationship("CartLine", back_populates="product", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="check_quantity_non_negative"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, title='{self.title}', quantity={self.quantity})>"


class CartLine(Base):
    __tablename__ = "cart"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    user = relationship("User", back_populates="cart_lines")
    product = relationship("Product", back_populates="cart_lines")

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
        CheckConstraint("quantity >= 1", name="check_cart_quantity_positive"),
    )
