import argparse
import logging
import sys

import inserting
from errors import PosError
from receipt import ReceiptGenerator, build_receipt
from services import ProductService, RefundService
from settings import get_settings
from transactions import get_refunds, get_transaction_by_receipt_id, list_transactions


def cmd_products(args):
    service = ProductService()
    products = service.get_all_products(search=args.search)
    print(f"{'ID':<4} {'Barcode':<15} {'Name':<30} {'Price':>9} {'Stock':>6}")
    print('-' * 68)
    for p in products:
        print(f"{p.id:<4} {p.barcode or '-':<15} {p.name:<30} {p.price:>9.2f} {p.stock:>6}")
    return 0


def cmd_low_stock(args):
    settings = get_settings()
    threshold = args.threshold if args.threshold is not None else settings.low_stock_threshold
    products = ProductService().get_low_stock(threshold)
    if not products:
        print(f"No products at or below {threshold} units.")
    for p in products:
        print(f"{p.name:<30} {p.stock:>4} left")
    return 0


def cmd_transactions(args):
    for tx in list_transactions(limit=args.limit):
        flag = " REFUNDED" if tx.refunded else ""
        print(f"{tx.receipt_id}  {tx.created_at}  {tx.payment_method:<5} {tx.total:>10.2f}{flag}")
    return 0


def cmd_show(args):
    if args.any:
        tx = get_transaction_by_receipt_id(args.receipt_id)
        if tx is None:
            print(f"Receipt {args.receipt_id} not found")
            return 1
    else:
        tx = RefundService().find_by_receipt_id(args.receipt_id)
    print(f"Receipt {tx.receipt_id} ({tx.created_at})")
    for it in tx.items:
        refunded = f"  [{it.refunded_quantity} refunded]" if it.refunded_quantity else ""
        print(f"  {it.name:<30} {it.quantity:>3} x {it.unit_price:>8.2f} = {it.line_total:>9.2f}{refunded}")
    print(f"  Subtotal {tx.subtotal:.2f}  Discount {tx.discount_amount:.2f}  "
          f"{tx.tax_name} {tx.tax_amount:.2f} ({tx.tax_type})  Total {tx.total:.2f}")
    for r in get_refunds(tx.id):
        print(f"  Refund #{r.id} {r.created_at}: {r.refund_amount:.2f} ({r.reason})")
    return 0


def cmd_receipt(args):
    tx = get_transaction_by_receipt_id(args.receipt_id)
    if tx is None:
        print(f"Receipt {args.receipt_id} not found")
        return 1
    png = ReceiptGenerator.generate(build_receipt(tx, get_settings()), output_dir=args.output)
    print(png)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="Point-of-sale terminal tools")
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('init', help='Create the schema and seed the catalog if empty')

    p = sub.add_parser('products', help='List active products')
    p.add_argument('--search')
    p.set_defaults(func=cmd_products)

    p = sub.add_parser('low-stock', help='List products at or below the low stock threshold')
    p.add_argument('--threshold', type=int)
    p.set_defaults(func=cmd_low_stock)

    p = sub.add_parser('transactions', help='List recent sales')
    p.add_argument('--limit', type=int, default=20)
    p.set_defaults(func=cmd_transactions)

    p = sub.add_parser('show', help='Show a sale that can still be refunded')
    p.add_argument('receipt_id')
    p.add_argument('--any', action='store_true', help='Also show fully refunded sales')
    p.set_defaults(func=cmd_show)

    p = sub.add_parser('receipt', help='Render a receipt PNG')
    p.add_argument('receipt_id')
    p.add_argument('--output', help='Directory for the PNG (default: ./receipts)')
    p.set_defaults(func=cmd_receipt)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Schema is created on import of database; seed an empty catalog on first run
    inserting.seed_if_needed()
    if args.command in (None, 'init'):
        return 0

    try:
        return args.func(args)
    except PosError as e:
        print(e.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
