import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .cart_item import Order, OrderItem, Product, RawMaterial

logger = logging.getLogger(__name__)

SCHEMA = '''
CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    price REAL NOT NULL,
    quantity INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    customer_name TEXT,
    customer_email TEXT,
    customer_phone TEXT,
    subtotal REAL NOT NULL,
    tax REAL NOT NULL,
    total REAL NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS order_items (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL REFERENCES orders(id),
    product_id TEXT REFERENCES products(id) ON DELETE SET NULL,
    quantity INTEGER NOT NULL,
    unit_price REAL NOT NULL,
    total_price REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS raw_materials (
    id TEXT PRIMARY KEY,
    food_item TEXT NOT NULL,
    ingredients TEXT NOT NULL
);
'''


class StoreError(Exception):
    pass


class NotFound(StoreError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ingredients(value: Any) -> List[str]:
    # Stored as JSON text, older rows may hold a bare string
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value] if value else []
        if isinstance(parsed, list):
            return [str(v) for v in parsed]
        return [str(parsed)]
    return []


class RetailStore:
    """
    SQLite-backed store for products, orders and raw materials.

    Every write commits on its own, there is no transaction spanning calls.
    """
    def __init__(self, db_path: Union[str, Path] = 'smartcart.db'):
        self.db_path = str(db_path)
        # One shared connection, statements and their commit or rollback run under this lock
        self._lock = threading.RLock()
        try:
            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self.connection.row_factory = sqlite3.Row
            self.connection.execute('PRAGMA foreign_keys = ON')
            self.connection.executescript(SCHEMA)
            self.connection.commit()
        except sqlite3.Error as e:
            raise StoreError(f'Could not open store at {self.db_path}: {e}') from e
        logger.info(f'Opened store at {self.db_path}')

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self.connection.execute(sql, tuple(params))
                self.connection.commit()
                return cursor
            except sqlite3.Error as e:
                self.connection.rollback()
                raise StoreError(str(e)) from e

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.connection.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def close(self):
        with self._lock:
            self.connection.close()

    # Products
    def list_products(self, in_stock_only: bool = False, search: Optional[str] = None) -> List[Product]:
        sql = 'SELECT id, name, price, quantity FROM products WHERE 1=1'
        params: List[Any] = []
        if in_stock_only:
            sql += ' AND quantity > 0'
        if search:
            sql += ' AND name LIKE ?'
            params.append(f'%{search}%')
        sql += ' ORDER BY name COLLATE NOCASE'
        return [Product(**dict(row)) for row in self._query(sql, params)]

    def get_product(self, product_id: str) -> Product:
        rows = self._query('SELECT id, name, price, quantity FROM products WHERE id = ?', (product_id,))
        if not rows:
            raise NotFound(f'Product {product_id} not found')
        return Product(**dict(rows[0]))

    def find_product_by_name(self, name: str) -> Optional[Product]:
        rows = self._query(
            'SELECT id, name, price, quantity FROM products WHERE name = ? COLLATE NOCASE LIMIT 1',
            (name,),
        )
        return Product(**dict(rows[0])) if rows else None

    def create_product(self, name: str, price: float, quantity: int = 0) -> Product:
        product = Product(id=str(uuid.uuid4()), name=name, price=price, quantity=quantity)
        self._execute(
            'INSERT INTO products (id, name, price, quantity, created_at) VALUES (?, ?, ?, ?, ?)',
            (product.id, product.name, product.price, product.quantity, _now()),
        )
        return product

    def update_product(self, product_id: str, **changes) -> Product:
        product = self.get_product(product_id)
        updated = product.model_copy(update={k: v for k, v in changes.items() if v is not None})
        # Re-validate the merged record
        updated = Product(**updated.model_dump())
        self._execute(
            'UPDATE products SET name = ?, price = ?, quantity = ? WHERE id = ?',
            (updated.name, updated.price, updated.quantity, product_id),
        )
        return updated

    def set_product_quantity(self, product_id: str, quantity: int):
        cursor = self._execute('UPDATE products SET quantity = ? WHERE id = ?', (quantity, product_id))
        if cursor.rowcount == 0:
            raise NotFound(f'Product {product_id} not found')

    def delete_product(self, product_id: str):
        cursor = self._execute('DELETE FROM products WHERE id = ?', (product_id,))
        if cursor.rowcount == 0:
            raise NotFound(f'Product {product_id} not found')

    # Orders
    def insert_order(self, order: Dict[str, Any]) -> Order:
        record = Order(id=str(uuid.uuid4()), created_at=_now(), **order)
        self._execute(
            '''INSERT INTO orders
               (id, customer_name, customer_email, customer_phone, subtotal, tax, total, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            (
                record.id, record.customer_name, record.customer_email, record.customer_phone,
                record.subtotal, record.tax, record.total, record.status, record.created_at,
            ),
        )
        return record

    def insert_order_items(self, items: List[Dict[str, Any]]) -> List[OrderItem]:
        records = [OrderItem(id=str(uuid.uuid4()), **item) for item in items]
        with self._lock:
            try:
                self.connection.executemany(
                    '''INSERT INTO order_items (id, order_id, product_id, quantity, unit_price, total_price)
                       VALUES (?, ?, ?, ?, ?, ?)''',
                    [(r.id, r.order_id, r.product_id, r.quantity, r.unit_price, r.total_price) for r in records],
                )
                self.connection.commit()
            except sqlite3.Error as e:
                self.connection.rollback()
                raise StoreError(str(e)) from e
        return records

    def _order_items(self, order_ids: List[str]) -> Dict[str, List[OrderItem]]:
        if not order_ids:
            return {}
        placeholders = ', '.join('?' for _ in order_ids)
        rows = self._query(
            f'''SELECT oi.id, oi.order_id, oi.product_id, p.name AS product_name,
                       oi.quantity, oi.unit_price, oi.total_price
                FROM order_items oi LEFT JOIN products p ON p.id = oi.product_id
                WHERE oi.order_id IN ({placeholders})
                ORDER BY oi.rowid''',
            order_ids,
        )
        grouped: Dict[str, List[OrderItem]] = {}
        for row in rows:
            grouped.setdefault(row['order_id'], []).append(OrderItem(**dict(row)))
        return grouped

    def list_orders(self) -> List[Order]:
        """All orders newest first, with their items and product names"""
        rows = self._query('SELECT * FROM orders ORDER BY created_at DESC')
        items = self._order_items([row['id'] for row in rows])
        return [Order(**dict(row), order_items=items.get(row['id'], [])) for row in rows]

    def get_order(self, order_id: str) -> Order:
        rows = self._query('SELECT * FROM orders WHERE id = ?', (order_id,))
        if not rows:
            raise NotFound(f'Order {order_id} not found')
        items = self._order_items([order_id])
        return Order(**dict(rows[0]), order_items=items.get(order_id, []))

    # Raw materials
    def list_raw_materials(self) -> List[RawMaterial]:
        rows = self._query('SELECT * FROM raw_materials ORDER BY food_item COLLATE NOCASE')
        return [
            RawMaterial(id=row['id'], food_item=row['food_item'], ingredients=_parse_ingredients(row['ingredients']))
            for row in rows
        ]

    def find_raw_material(self, query: str) -> Optional[RawMaterial]:
        """First raw material whose food item contains the query, case-insensitive"""
        rows = self._query(
            'SELECT * FROM raw_materials WHERE food_item LIKE ? ORDER BY food_item COLLATE NOCASE LIMIT 1',
            (f'%{query.strip()}%',),
        )
        if not rows:
            return None
        row = rows[0]
        return RawMaterial(id=row['id'], food_item=row['food_item'], ingredients=_parse_ingredients(row['ingredients']))

    def add_raw_material(self, food_item: str, ingredients: List[str]) -> RawMaterial:
        material = RawMaterial(id=str(uuid.uuid4()), food_item=food_item, ingredients=list(ingredients))
        self._execute(
            'INSERT INTO raw_materials (id, food_item, ingredients) VALUES (?, ?, ?)',
            (material.id, material.food_item, json.dumps(material.ingredients)),
        )
        return material
