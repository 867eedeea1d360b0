"""
Migration V1 -> V2
Upgrades a database written by the first (Node) storefront server:
- users: `password` -> `password_hash`, adds `fullname`, role 'comprador' -> 'buyer'
- products: Spanish column names -> English ones, adds `price` (default 0)
- cart: rebuilt so cart lines are removed together with their product

Usage:
  python -m migration.migration_v1_to_v2 --db path/to/skateboard.db
"""
import argparse
import os
import sqlite3
from contextlib import closing

USER_RENAMES = {"password": "password_hash"}
PRODUCT_RENAMES = {"titulo": "title", "detalle": "description", "cantidad": "quantity", "imagen": "image"}

CART_V2 = """
CREATE TABLE cart_v2 (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
  quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
  created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
  CONSTRAINT uq_cart_user_product UNIQUE (user_id, product_id)
)
"""


def columns(conn: sqlite3.Connection, table: str) -> list:
    cur = conn.execute(f"PRAGMA table_info({table})")
    return [row[1] for row in cur.fetchall()]


def has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    return column in columns(conn, table)


def rename_columns(conn: sqlite3.Connection, table: str, renames: dict):
    existing = columns(conn, table)
    for old, new in renames.items():
        if old in existing and new not in existing:
            conn.execute(f"ALTER TABLE {table} RENAME COLUMN {old} TO {new}")


def rebuild_cart(conn: sqlite3.Connection):
    # SQLite cannot alter a foreign key in place
    conn.execute(CART_V2)
    conn.execute(
        "INSERT INTO cart_v2 (id, user_id, product_id, quantity, created_at) "
        "SELECT id, user_id, product_id, quantity, COALESCE(created_at, CURRENT_TIMESTAMP) FROM cart"
    )
    conn.execute("DROP TABLE cart")
    conn.execute("ALTER TABLE cart_v2 RENAME TO cart")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_cart_user ON cart(user_id)")


def migrate(db_path: str):
    if db_path == ":memory:":
        raise ValueError("Use a file-backed DB for migration script")

    if not os.path.exists(db_path):
        raise FileNotFoundError(db_path)

    with closing(sqlite3.connect(db_path)) as conn:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        missing = {"users", "products", "cart"} - tables
        if missing:
            raise RuntimeError(f"tables missing; cannot migrate: {sorted(missing)}")

        # foreign keys off while the cart table is swapped out
        conn.execute("PRAGMA foreign_keys=OFF")

        rename_columns(conn, "users", USER_RENAMES)
        if not has_column(conn, "users", "fullname"):
            conn.execute("ALTER TABLE users ADD COLUMN fullname TEXT")
        conn.execute("UPDATE users SET role = 'buyer' WHERE role = 'comprador'")

        rename_columns(conn, "products", PRODUCT_RENAMES)
        if not has_column(conn, "products", "price"):
            conn.execute("ALTER TABLE products ADD COLUMN price NUMERIC(10, 2) NOT NULL DEFAULT 0")

        cart_sql = conn.execute("SELECT sql FROM sqlite_master WHERE name = 'cart'").fetchone()[0]
        if "ON DELETE CASCADE" not in cart_sql.upper():
            rebuild_cart(conn)

        conn.commit()
        conn.execute("PRAGMA foreign_keys=ON")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    args = parser.parse_args()
    migrate(args.db)

if __name__ == "__main__":
    main()
