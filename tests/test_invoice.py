from PIL import PdfParser

from smartcart.cart_item import Order, OrderItem
from smartcart.invoice import _format_date, invoice_filename, render_invoice_pdf


def sample_order(**overrides):
    fields = dict(
        id='3f2a9c1e-0000-4000-8000-000000000000',
        customer_name='Ada Lovelace',
        customer_email='ada@example.com',
        subtotal=7.27,
        tax=0.5816,
        total=7.8516,
        created_at='2026-10-17T14:30:00+00:00',
        order_items=[
            OrderItem(order_id='3f2a9c1e', product_id='p1', product_name='Soap', quantity=2, unit_price=1.99, total_price=3.98),
            OrderItem(order_id='3f2a9c1e', product_id=None, quantity=1, unit_price=3.29, total_price=3.29),
        ],
    )
    fields.update(overrides)
    return Order(**fields)


def test_invoice_is_pdf():
    pdf = render_invoice_pdf(sample_order())

    assert pdf.startswith(b'%PDF')
    assert len(pdf) > 1000


def test_walk_in_customer_invoice_renders():
    pdf = render_invoice_pdf(sample_order(customer_name=None, customer_email=None, order_items=[]), currency='€')
    assert pdf.startswith(b'%PDF')


def test_invoice_filename_uses_short_id():
    assert invoice_filename(sample_order()) == 'invoice-3f2a9c1e.pdf'


def test_date_formatting():
    assert _format_date('2026-10-17T14:30:00+00:00') == 'October 17, 2026, 02:30 PM'
    assert _format_date('not a date') == 'not a date'


def page_count(pdf):
    return len(PdfParser.PdfParser(buf=pdf).pages)


def test_short_invoice_is_one_page():
    assert page_count(render_invoice_pdf(sample_order())) == 1


def test_long_invoice_continues_on_more_pages():
    items = [
        OrderItem(order_id='3f2a9c1e', product_id=f'p{i}', product_name=f'Item {i}', quantity=1, unit_price=1.0, total_price=1.0)
        for i in range(60)
    ]
    pdf = render_invoice_pdf(sample_order(order_items=items, subtotal=60.0, tax=4.8, total=64.8))

    assert pdf.startswith(b'%PDF')
    assert page_count(pdf) > 1
