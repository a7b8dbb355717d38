import logging
import sqlite3

from database import get_connection, now_str
from models import Product, Category

logger = logging.getLogger(__name__)


def add_product(name, price, stock, barcode=None, category_id=None):
    conn = get_connection()
    cur = conn.cursor()

    cur.execute(
        "INSERT INTO products (name, barcode, price, stock, category_id) VALUES (?, ?, ?, ?, ?)",
        (name, barcode or None, price, stock, category_id)
    )
    product_id = cur.lastrowid

    conn.commit()
    conn.close()
    return product_id


def get_product(id):
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("SELECT * FROM products WHERE id = ?", (id,))
    row = cur.fetchone()

    conn.close()
    return Product.from_row(row) if row else None


def get_product_by_barcode(barcode):
    if not barcode:
        return None
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("SELECT * FROM products WHERE barcode = ? AND active = 1", (barcode.strip(),))
    row = cur.fetchone()

    conn.close()
    return Product.from_row(row) if row else None


def get_products(category_id=None, search=None):
    conn = get_connection()
    query = "SELECT * FROM products WHERE active = 1"
    params = []

    if category_id:
        query += " AND category_id = ?"
        params.append(category_id)

    if search:
        query += " AND (name LIKE ? OR barcode LIKE ?)"
        params.extend([f"%{search}%", f"%{search}%"])

    rows = conn.execute(query + " ORDER BY name", params).fetchall()
    conn.close()
    return [Product.from_row(r) for r in rows]


def get_categories():
    conn = get_connection()
    rows = conn.execute("SELECT * FROM categories ORDER BY name").fetchall()
    conn.close()
    return [Category.from_row(r) for r in rows]


def get_low_stock_products(threshold):
    conn = get_connection()
    rows = conn.execute(
        "SELECT * FROM products WHERE active = 1 AND stock <= ? ORDER BY stock, name",
        (threshold,)
    ).fetchall()
    conn.close()
    return [Product.from_row(r) for r in rows]


def adjust_stock(product_id, change, reason, reference=None):
    """Apply ``change`` to a product's stock, floored at zero.

    Records the movement actually applied and returns the new stock level.
    Raises LookupError when the product does not exist.
    """
    conn = get_connection()
    try:
        row = conn.execute("SELECT stock FROM products WHERE id = ?", (product_id,)).fetchone()
        if not row:
            raise LookupError(f"Product {product_id} not found")

        new_stock = max(0, row["stock"] + change)
        applied = new_stock - row["stock"]
        if applied != change:
            logger.warning("Stock for product %s floored at 0 (requested %+d, applied %+d)",
                           product_id, change, applied)

        conn.execute("UPDATE products SET stock = ? WHERE id = ?", (new_stock, product_id))
        conn.execute(
            "INSERT INTO stock_movements (product_id, change, reason, reference, created_at) VALUES (?, ?, ?, ?, ?)",
            (product_id, applied, reason, reference, now_str())
        )
        conn.commit()
        return new_stock
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def update_product_stock(updates, reason="sale", reference=None):
    """Decrement stock for each ``{"product_id", "quantity"}`` entry.

    Entries are applied one by one so a failing product does not block the
    others. Returns one ack dict per entry: ``{"product_id", "success",
    "stock" | "message"}``.
    """
    acks = []
    for update in updates:
        product_id = update["product_id"]
        try:
            stock = adjust_stock(product_id, -int(update["quantity"]), reason, reference)
        except (LookupError, sqlite3.Error) as e:
            logger.warning("Stock update failed for product %s: %s", product_id, e)
            acks.append({"product_id": product_id, "success": False, "message": str(e)})
        else:
            acks.append({"product_id": product_id, "success": True, "stock": stock})
    return acks
