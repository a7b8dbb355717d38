from database import get_connection, now_str
from models import Transaction, Refund, RefundItem

RECEIPT_PREFIX = "INV"


def format_receipt_id(transaction_id):
    return f"{RECEIPT_PREFIX}{transaction_id:06d}"


def create_transaction(data):
    """
    Persist a sale and its item snapshot in one commit.

    Example input:
    data = {
        "items": [{"product_id": 1, "name": "Cola", "barcode": "123", "price": 10.0, "quantity": 2}],
        "subtotal": 20.0, "discount_amount": 2.0, "discount_type": "percentage", "discount_value": 10,
        "tax_amount": 3.6, "tax_name": "VAT", "tax_rate": 20.0, "tax_type": "added",
        "total": 21.6, "payment_method": "cash", "payment_amount": 25.0, "change": 3.4,
    }

    Returns ``{"id": ..., "receipt_id": ..., "created_at": ..., "item_ids": [...]}``
    with ``item_ids`` in the order of ``data["items"]``.
    """
    created_at = data.get("created_at") or now_str()
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO transactions (created_at, subtotal, discount_amount, discount_type, discount_value,
                                      tax_amount, tax_name, tax_rate, tax_type, total,
                                      payment_method, payment_amount, change)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (created_at, data["subtotal"], data["discount_amount"],
              data.get("discount_type"), data.get("discount_value") or 0, data["tax_amount"],
              data.get("tax_name"), data.get("tax_rate") or 0, data["tax_type"], data["total"],
              data["payment_method"], data["payment_amount"], data["change"]))
        trans_id = cur.lastrowid
        receipt_id = format_receipt_id(trans_id)
        cur.execute("UPDATE transactions SET receipt_id = ? WHERE id = ?", (receipt_id, trans_id))

        item_ids = []
        for it in data["items"]:
            cur.execute(
                "INSERT INTO transaction_items (transaction_id, product_id, name, barcode, unit_price, quantity, line_total) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (trans_id, it["product_id"], it["name"], it.get("barcode"), it["price"], it["quantity"],
                 it["price"] * it["quantity"])
            )
            item_ids.append(cur.lastrowid)

        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return {"id": trans_id, "receipt_id": receipt_id, "created_at": created_at, "item_ids": item_ids}


def _load_transaction(conn, row):
    if not row:
        return None
    items = conn.execute("SELECT * FROM transaction_items WHERE transaction_id = ? ORDER BY id",
                         (row["id"],)).fetchall()
    return Transaction.from_row(row, items)


def get_transaction_by_receipt_id(receipt_id):
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM transactions WHERE receipt_id = ?",
                           ((receipt_id or "").strip().upper(),)).fetchone()
        return _load_transaction(conn, row)
    finally:
        conn.close()


def list_transactions(limit=50):
    conn = get_connection()
    try:
        rows = conn.execute("SELECT * FROM transactions ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [_load_transaction(conn, r) for r in rows]
    finally:
        conn.close()


def process_refund(data):
    """
    Persist a refund and advance the refunded quantity of each sold item.

    Example input:
    data = {
        "transaction_id": 7, "receipt_id": "INV000007", "reason": "Damaged",
        "refund_amount": 12.0, "payment_method": "cash",
        "items": [{"transaction_item_id": 11, "product_id": 3, "name": "Cola",
                   "unit_price": 10.0, "quantity": 1, "return_to_stock": True}],
    }

    Quantities are re-checked against what is still refundable inside the same
    database transaction. Returns ``{"success": True, "refund_id": ...}`` or
    ``{"success": False, "message": ...}`` when nothing was written.
    """
    conn = get_connection()
    cur = conn.cursor()
    try:
        for it in data["items"]:
            row = cur.execute(
                "SELECT quantity, refunded_quantity FROM transaction_items WHERE id = ? AND transaction_id = ?",
                (it["transaction_item_id"], data["transaction_id"])
            ).fetchone()
            if not row:
                return {"success": False, "message": f"Item {it['transaction_item_id']} is not part of this sale"}
            remaining = row["quantity"] - row["refunded_quantity"]
            if it["quantity"] > remaining:
                return {"success": False,
                        "message": f"Only {remaining} of {it['name']} can still be refunded"}

        created_at = now_str()
        cur.execute(
            "INSERT INTO refunds (transaction_id, receipt_id, reason, refund_amount, payment_method, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (data["transaction_id"], data["receipt_id"], data["reason"], data["refund_amount"],
             data.get("payment_method"), created_at)
        )
        refund_id = cur.lastrowid

        for it in data["items"]:
            cur.execute(
                "INSERT INTO refund_items (refund_id, transaction_item_id, product_id, name, unit_price, quantity, return_to_stock) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (refund_id, it["transaction_item_id"], it["product_id"], it["name"], it["unit_price"],
                 it["quantity"], 1 if it.get("return_to_stock", True) else 0)
            )
            cur.execute("UPDATE transaction_items SET refunded_quantity = refunded_quantity + ? WHERE id = ?",
                        (it["quantity"], it["transaction_item_id"]))

        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return {"success": True, "refund_id": refund_id, "created_at": created_at}


def mark_refunded_if_complete(transaction_id):
    """Set the ``refunded`` flag once no sold quantity remains refundable.

    Returns the flag value after the update.
    """
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT COALESCE(SUM(quantity - refunded_quantity), 0) AS remaining "
            "FROM transaction_items WHERE transaction_id = ?",
            (transaction_id,)
        ).fetchone()
        refunded = row["remaining"] <= 0
        if refunded:
            conn.execute("UPDATE transactions SET refunded = 1 WHERE id = ?", (transaction_id,))
            conn.commit()
        return refunded
    finally:
        conn.close()


def get_refunds(transaction_id):
    conn = get_connection()
    try:
        rows = conn.execute("SELECT * FROM refunds WHERE transaction_id = ? ORDER BY id",
                            (transaction_id,)).fetchall()
        refunds = []
        for r in rows:
            items = conn.execute("SELECT * FROM refund_items WHERE refund_id = ? ORDER BY id",
                                 (r["id"],)).fetchall()
            refunds.append(Refund(
                r["id"], r["transaction_id"], r["receipt_id"],
                [RefundItem(i["transaction_item_id"], i["product_id"], i["name"], i["unit_price"],
                            i["quantity"], bool(i["return_to_stock"])) for i in items],
                r["reason"], r["refund_amount"], r["created_at"], payment_method=r["payment_method"],
            ))
        return refunds
    finally:
        conn.close()
