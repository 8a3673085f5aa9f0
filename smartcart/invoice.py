import io
from datetime import datetime

from PIL import Image, ImageDraw, ImageFont

from .cart_item import Order

# A4 at 144 dpi
PAGE_SIZE = (1190, 1684)
RESOLUTION = 144.0
MARGIN = 80
FOOTER_Y = PAGE_SIZE[1] - 140
# Rows and totals stay above the footer
CONTENT_BOTTOM = FOOTER_Y - 60
ROW_HEIGHT = 40
TOTALS_HEIGHT = 3 * ROW_HEIGHT

# Column x positions for the items table
COLUMNS = {'item': MARGIN + 10, 'qty': 700, 'unit': 820, 'total': 1000}

GRAY = (240, 240, 240)
BLACK = (0, 0, 0)
MUTED = (90, 90, 90)


def invoice_filename(order: Order) -> str:
    return f'invoice-{order.short_id}.pdf'


def _format_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime('%B %d, %Y, %I:%M %p')
    except ValueError:
        return value


def render_invoice_pdf(order: Order, currency: str = '$') -> bytes:
    """
    Renders an order as a PDF invoice, the items table continues onto
    further pages when it does not fit on one

    args:
        order (Order): Order with its items loaded
        currency (str): Symbol printed in front of amounts
    returns:
        bytes: PDF document
    """
    title_font = ImageFont.load_default(size=48)
    heading_font = ImageFont.load_default(size=28)
    font = ImageFont.load_default(size=22)
    pages = []

    def money(amount: float) -> str:
        return f'{currency}{amount:.2f}'

    def new_page() -> ImageDraw.ImageDraw:
        page = Image.new('RGB', PAGE_SIZE, 'white')
        pages.append(page)
        return ImageDraw.Draw(page)

    def table_header(draw: ImageDraw.ImageDraw, y: int) -> int:
        draw.rectangle((MARGIN, y - 10, PAGE_SIZE[0] - MARGIN, y + 35), fill=GRAY)
        draw.text((COLUMNS['item'], y), 'Item', font=font, fill=BLACK)
        draw.text((COLUMNS['qty'], y), 'Qty', font=font, fill=BLACK)
        draw.text((COLUMNS['unit'], y), 'Unit Price', font=font, fill=BLACK)
        draw.text((COLUMNS['total'], y), 'Total', font=font, fill=BLACK)
        return y + 55

    def continuation_page() -> tuple:
        draw = new_page()
        draw.text((MARGIN, MARGIN), f'Invoice #{order.short_id.upper()} (continued)', font=heading_font, fill=MUTED)
        return draw, MARGIN + 80

    draw = new_page()

    # Header
    draw.text((MARGIN, 80), 'INVOICE', font=title_font, fill=BLACK)
    draw.text((MARGIN, 150), 'Supermarket Management System', font=font, fill=MUTED)

    # Invoice details
    draw.text((MARGIN, 220), f'Invoice Number: #{order.short_id.upper()}', font=font, fill=BLACK)
    draw.text((MARGIN, 255), f'Date: {_format_date(order.created_at)}', font=font, fill=BLACK)
    draw.text((MARGIN, 290), f'Status: {order.status.upper()}', font=font, fill=BLACK)

    # Customer details
    draw.text((MARGIN, 360), 'Bill To:', font=heading_font, fill=BLACK)
    y = 400
    draw.text((MARGIN, y), order.customer_name or 'Walk-in Customer', font=font, fill=BLACK)
    for line in (order.customer_email, order.customer_phone):
        if line:
            y += 35
            draw.text((MARGIN, y), line, font=font, fill=BLACK)

    # Items, the table header repeats on every page the table spans
    y = table_header(draw, y + 80)
    for item in order.order_items:
        if y + ROW_HEIGHT > CONTENT_BOTTOM:
            draw, y = continuation_page()
            y = table_header(draw, y)
        name = item.product_name or 'Unknown item'
        draw.text((COLUMNS['item'], y), name[:40], font=font, fill=BLACK)
        draw.text((COLUMNS['qty'], y), str(item.quantity), font=font, fill=BLACK)
        draw.text((COLUMNS['unit'], y), money(item.unit_price), font=font, fill=BLACK)
        draw.text((COLUMNS['total'], y), money(item.total_price), font=font, fill=BLACK)
        y += ROW_HEIGHT

    # Totals
    y += 30
    if y + TOTALS_HEIGHT > CONTENT_BOTTOM:
        draw, y = continuation_page()
    draw.line((COLUMNS['unit'] - 20, y - 15, PAGE_SIZE[0] - MARGIN, y - 15), fill=MUTED, width=2)
    for label, amount in (('Subtotal:', order.subtotal), ('Tax:', order.tax)):
        draw.text((COLUMNS['unit'], y), label, font=font, fill=BLACK)
        draw.text((COLUMNS['total'], y), money(amount), font=font, fill=BLACK)
        y += ROW_HEIGHT
    draw.text((COLUMNS['unit'], y), 'Total:', font=heading_font, fill=BLACK)
    draw.text((COLUMNS['total'], y), money(order.total), font=heading_font, fill=BLACK)

    # Footer
    draw.text((MARGIN, FOOTER_Y), 'Thank you for your business!', font=font, fill=MUTED)
    if len(pages) > 1:
        for number, page in enumerate(pages, start=1):
            ImageDraw.Draw(page).text(
                (COLUMNS['total'], FOOTER_Y), f'Page {number} of {len(pages)}', font=font, fill=MUTED
            )

    buffer = io.BytesIO()
    pages[0].save(buffer, format='PDF', resolution=RESOLUTION, save_all=True, append_images=pages[1:])
    return buffer.getvalue()
