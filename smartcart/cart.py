import logging
import threading
from typing import Dict, List, Optional

from .cart_item import CartItem, Customer, Order, Product
from .store import RetailStore, StoreError

logger = logging.getLogger(__name__)

TAX_RATE = 0.08


class CartError(Exception):
    pass


class StockLimitError(CartError):
    pass


class EmptyCartError(CartError):
    pass


class CustomerInfoRequired(CartError):
    pass


class CheckoutError(Exception):
    """
    A checkout step failed after earlier steps were already applied.

    Nothing is rolled back: when `order_id` is set the order exists in the store
    even though later steps did not complete.
    """
    def __init__(self, message: str, stage: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
        self.order_id = order_id


class Cart:
    """Shopping cart keyed by product id, capped by each product's recorded stock"""
    def __init__(self, tax_rate: float = TAX_RATE):
        self.tax_rate = tax_rate
        self._items: Dict[str, CartItem] = {}
        # Routes run on a threadpool, the stock check and increment must not interleave
        self.lock = threading.RLock()

    @property
    def items(self) -> List[CartItem]:
        with self.lock:
            return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def get(self, product_id: str) -> Optional[CartItem]:
        return self._items.get(product_id)

    def add(self, product: Product) -> CartItem:
        """
        Adds one unit of a product

        raises:
            StockLimitError: Cart already holds all available stock
        """
        with self.lock:
            existing = self._items.get(product.id)
            if existing is None:
                if product.quantity < 1:
                    raise StockLimitError(f'{product.name} is out of stock')
                item = CartItem(product_id=product.id, name=product.name, price=product.price, stock=product.quantity)
                self._items[product.id] = item
                return item

            # Refresh the stock snapshot before checking the ceiling
            existing.stock = product.quantity
            if existing.cart_quantity >= product.quantity:
                raise StockLimitError(f'Cannot add more {product.name}')
            existing.cart_quantity += 1
            return existing

    def update_quantity(self, product: Product, quantity: int) -> Optional[CartItem]:
        """Sets the quantity of a cart line, zero removes the line"""
        if quantity <= 0:
            self.remove(product.id)
            return None
        if quantity > product.quantity:
            raise StockLimitError(f'Only {product.quantity} items available')

        with self.lock:
            item = self._items.get(product.id)
            if item is None:
                item = CartItem(product_id=product.id, name=product.name, price=product.price, stock=product.quantity)
                self._items[product.id] = item
            item.stock = product.quantity
            item.cart_quantity = quantity
            return item

    def remove(self, product_id: str):
        with self.lock:
            self._items.pop(product_id, None)

    def clear(self):
        with self.lock:
            self._items.clear()

    def subtotal(self) -> float:
        return sum(item.price * item.cart_quantity for item in self.items)

    def tax(self) -> float:
        return self.subtotal() * self.tax_rate

    def total(self) -> float:
        return self.subtotal() + self.tax()

    def summary(self) -> dict:
        with self.lock:
            return {
                'items': [dict(item.model_dump(), line_total=item.line_total) for item in self.items],
                'subtotal': self.subtotal(),
                'tax': self.tax(),
                'total': self.total(),
            }


def checkout(cart: Cart, customer: Customer, store: RetailStore) -> Order:
    """
    Records the sale: insert order, insert order items, then decrement stock

    The three steps commit independently, a failure part way leaves the earlier
    steps in place and raises CheckoutError naming the failed stage.

    args:
        cart (Cart): Cart to check out, cleared on success
        customer (Customer): Customer details, name is required
        store (RetailStore): Backing store
    returns:
        Order: The recorded order with its items
    """
    # The cart stays locked so lines cannot change between totals and stock updates
    with cart.lock:
        return _record_sale(cart, customer, store)


def _record_sale(cart: Cart, customer: Customer, store: RetailStore) -> Order:
    if len(cart) == 0:
        raise EmptyCartError('Please add items to cart before checkout')
    if not customer.name.strip():
        raise CustomerInfoRequired('Please enter customer name')

    lines = cart.items

    # Create order
    try:
        order = store.insert_order({
            'customer_name': customer.name.strip(),
            'customer_email': customer.email,
            'customer_phone': customer.phone,
            'subtotal': cart.subtotal(),
            'tax': cart.tax(),
            'total': cart.total(),
            'status': 'completed',
        })
    except StoreError as e:
        raise CheckoutError(f'Failed to process order: {e}', stage='order') from e

    # Create order items, prices are snapshotted at the time of sale
    try:
        order_items = store.insert_order_items([
            {
                'order_id': order.id,
                'product_id': item.product_id,
                'product_name': item.name,
                'quantity': item.cart_quantity,
                'unit_price': item.price,
                'total_price': item.line_total,
            }
            for item in lines
        ])
    except StoreError as e:
        logger.error(f'Order {order.id} recorded without items: {e}')
        raise CheckoutError(f'Failed to process order: {e}', stage='order_items', order_id=order.id) from e

    # Update product quantities
    for item in lines:
        try:
            store.set_product_quantity(item.product_id, item.stock - item.cart_quantity)
        except StoreError as e:
            logger.error(f'Order {order.id} recorded but stock for {item.product_id} was not updated: {e}')
            raise CheckoutError(f'Failed to process order: {e}', stage='stock', order_id=order.id) from e

    cart.clear()
    logger.info(f'Order {order.short_id} completed, total {order.total:.2f}')
    return order.model_copy(update={'order_items': order_items})
