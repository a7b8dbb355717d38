import logging
import os

import qrcode
from PIL import Image, ImageDraw, ImageFont

from models import TAX_DISABLED

logger = logging.getLogger(__name__)

RECEIPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'receipts')


def build_receipt(transaction, settings):
    """Receipt artifact handed to the rendering and printing side."""
    return {
        'receipt_id': transaction.receipt_id,
        'timestamp': transaction.created_at,
        'store': {
            'name': settings.store_name,
            'address': settings.store_address,
            'phone': settings.store_phone,
            'message': settings.receipt_message,
        },
        'currency': settings.currency,
        'items': [{
            'name': it.name,
            'quantity': it.quantity,
            'unit_price': it.unit_price,
            'line_total': it.line_total,
        } for it in transaction.items],
        'subtotal': transaction.subtotal,
        'discount': {
            'type': transaction.discount_type,
            'value': transaction.discount_value,
            'amount': transaction.discount_amount,
        },
        'tax': {
            'name': transaction.tax_name,
            'rate': transaction.tax_rate,
            'type': transaction.tax_type,
            'amount': transaction.tax_amount,
        },
        'total': transaction.total,
        'payment_method': transaction.payment_method,
        'payment_amount': transaction.payment_amount,
        'change': transaction.change,
    }


class ReceiptGenerator:
    @staticmethod
    def _load_font(size):
        # Try common system fonts, fallback to default
        candidates = ["arial.ttf", "DejaVuSans.ttf", "LiberationSans-Regular.ttf"]
        for f in candidates:
            try:
                return ImageFont.truetype(f, size)
            except OSError:
                continue
        return ImageFont.load_default()

    @staticmethod
    def _text_size(draw_obj, text, font):
        bbox = draw_obj.textbbox((0, 0), text, font=font)
        return (bbox[2] - bbox[0], bbox[3] - bbox[1])

    @staticmethod
    def _wrap_text(draw_obj, text, font, max_w):
        words = (text or '').split()
        if not words:
            return ['']
        lines = []
        cur = words[0]
        for w in words[1:]:
            tw, _ = ReceiptGenerator._text_size(draw_obj, cur + ' ' + w, font)
            if tw <= max_w:
                cur = cur + ' ' + w
            else:
                lines.append(cur)
                cur = w
        lines.append(cur)
        return lines

    @staticmethod
    def summary_lines(receipt):
        """Label/amount pairs printed under the item list."""
        cur = receipt.get('currency') or ''
        lines = [("Subtotal", f"{cur} {receipt['subtotal']:,.2f}")]

        discount = receipt.get('discount') or {}
        if discount.get('amount'):
            label = "Discount"
            if discount.get('type') == 'percentage':
                label = f"Discount ({discount['value']:g}%)"
            lines.append((label, f"-{cur} {discount['amount']:,.2f}"))

        tax = receipt.get('tax') or {}
        if tax.get('type') and tax['type'] != TAX_DISABLED:
            label = f"{tax.get('name') or 'Tax'} ({tax.get('rate', 0):g}%)"
            if tax['type'] == 'included':
                label += " incl."
            lines.append((label, f"{cur} {tax.get('amount', 0):,.2f}"))

        lines.append(("Total", f"{cur} {receipt['total']:,.2f}"))
        return lines

    @staticmethod
    def generate(receipt, output_dir=None):
        """Render a PNG receipt and return its path."""
        receipts_dir = output_dir or RECEIPTS_DIR
        os.makedirs(receipts_dir, exist_ok=True)
        png_path = os.path.join(receipts_dir, f"{receipt['receipt_id']}.png")

        width = 800
        header_h = 200
        line_h = 28
        footer_h = 180

        tmp_draw = ImageDraw.Draw(Image.new('RGB', (1, 1)))

        f_head = ReceiptGenerator._load_font(28)
        f_sub = ReceiptGenerator._load_font(16)
        f_body = ReceiptGenerator._load_font(14)
        f_mono = ReceiptGenerator._load_font(12)

        x = 40
        right_boundary = width - x
        value_x = right_boundary - 20
        col_total_right = value_x
        col_price_right = value_x - 120
        col_qty_center = col_price_right - 60
        item_col_w = max(80, int(col_qty_center - x) - 12)

        # Wrap item names first so the canvas height is exact
        cur = receipt.get('currency') or ''
        prepared_items = []
        total_items_height = 0
        for it in receipt['items']:
            lines = ReceiptGenerator._wrap_text(tmp_draw, str(it.get('name') or ''), f_mono, item_col_w)
            h = len(lines) * line_h + 6
            total_items_height += h
            prepared_items.append({
                'lines': lines,
                'quantity': str(it['quantity']),
                'price': f"{float(it['unit_price']):.2f}",
                'total': f"{float(it['line_total']):.2f}",
            })

        summary = ReceiptGenerator.summary_lines(receipt)
        items_h = max(200, total_items_height + 20) + len(summary) * line_h
        height = header_h + items_h + footer_h

        img = Image.new('RGB', (width, height), color=(255, 255, 255))
        draw = ImageDraw.Draw(img)

        # Header
        store = receipt.get('store') or {}
        y = 30
        draw.text((x, y), store.get('name') or '', font=f_head, fill=(20, 20, 20))
        y += 36
        if store.get('address'):
            draw.text((x, y), store['address'], font=f_sub, fill=(60, 60, 60))
        y += 20
        if store.get('phone'):
            draw.text((x, y), store['phone'], font=f_sub, fill=(60, 60, 60))
        y += 26
        draw.text((x, y), f"Receipt #: {receipt['receipt_id']}", font=ReceiptGenerator._load_font(18), fill=(0, 0, 0))
        y += 20
        draw.text((x, y), f"Date: {receipt.get('timestamp') or ''}", font=f_body, fill=(0, 0, 0))
        y += 26

        draw.line((x, y, width - x, y), fill=(200, 200, 200), width=1)
        y += 12

        draw.text((x, y), "Item", font=f_mono, fill=(0, 0, 0))
        tw_q, _ = ReceiptGenerator._text_size(draw, "Qty", f_mono)
        draw.text((col_qty_center - tw_q / 2, y), "Qty", font=f_mono, fill=(0, 0, 0))
        tw_p, _ = ReceiptGenerator._text_size(draw, "Price", f_mono)
        draw.text((col_price_right - tw_p, y), "Price", font=f_mono, fill=(0, 0, 0))
        tw_t, _ = ReceiptGenerator._text_size(draw, "Total", f_mono)
        draw.text((col_total_right - tw_t, y), "Total", font=f_mono, fill=(0, 0, 0))
        y += 18
        draw.line((x, y, width - x, y), fill=(230, 230, 230), width=1)
        y += 8

        for itm in prepared_items:
            first_line = True
            for ln in itm['lines']:
                draw.text((x, y), ln, font=f_mono, fill=(20, 20, 20))
                if first_line:
                    qw, _ = ReceiptGenerator._text_size(draw, itm['quantity'], f_mono)
                    draw.text((col_qty_center - qw / 2, y), itm['quantity'], font=f_mono, fill=(20, 20, 20))
                    pw, _ = ReceiptGenerator._text_size(draw, itm['price'], f_mono)
                    draw.text((col_price_right - pw, y), itm['price'], font=f_mono, fill=(20, 20, 20))
                    tw_item, _ = ReceiptGenerator._text_size(draw, itm['total'], f_mono)
                    draw.text((col_total_right - tw_item, y), itm['total'], font=f_mono, fill=(20, 20, 20))
                    first_line = False
                y += line_h
            draw.line((x, y, width - x, y), fill=(245, 245, 245), width=1)
            y += 6

        # Totals, right-aligned
        y += 6
        for label, amount in summary:
            txt = f"{label}: {amount}"
            twt, _ = ReceiptGenerator._text_size(draw, txt, f_body)
            draw.text((value_x - twt, y), txt, font=f_body,
                      fill=(0, 100, 0) if label == 'Total' else (0, 0, 0))
            y += line_h

        # QR code of the receipt id, used by the refund lookup
        qr_size = 140
        qr = qrcode.QRCode(box_size=4, border=2)
        qr.add_data(receipt['receipt_id'])
        qr.make(fit=True)
        qr_img = qr.make_image(fill_color="black", back_color="white").convert('RGB')
        qr_img = qr_img.resize((qr_size, qr_size), Image.NEAREST)
        img.paste(qr_img, (width - qr_size - 20, min(30, max(10, header_h - qr_size - 10))))

        # Payment block inside the footer
        pay_y = max(header_h + items_h + 16, y + 8)
        draw.line((x, pay_y - 8, width - x, pay_y - 8), fill=(230, 230, 230), width=1)
        p_label_x = right_boundary - 240
        p_value_x = right_boundary - 20
        draw.text((p_label_x, pay_y), f"Payment: {receipt.get('payment_method') or ''}", font=f_body, fill=(0, 0, 0))
        if receipt.get('payment_amount') is not None:
            paid_txt = f"Paid: {cur} {float(receipt['payment_amount']):,.2f}"
            pw, _ = ReceiptGenerator._text_size(draw, paid_txt, f_body)
            draw.text((p_value_x - pw, pay_y), paid_txt, font=f_body, fill=(0, 0, 0))
        if receipt.get('change') is not None:
            ch_txt = f"Change: {cur} {float(receipt['change']):,.2f}"
            ch_w, _ = ReceiptGenerator._text_size(draw, ch_txt, f_body)
            draw.text((p_value_x - ch_w, pay_y + line_h), ch_txt, font=f_body, fill=(0, 100, 0))

        if store.get('message'):
            draw.text((x, pay_y + line_h * 2 + 6), store['message'], font=f_sub, fill=(80, 80, 80))

        img.save(png_path)
        logger.info("Receipt %s written to %s", receipt['receipt_id'], png_path)
        return png_path
