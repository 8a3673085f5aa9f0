from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Inventory record
class Product(BaseModel):
    id: str
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=0)


class ProductInput(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)


# Product line in the shopping cart
class CartItem(BaseModel):
    model_config = ConfigDict(frozen=False)

    product_id: str
    name: str
    price: float
    stock: int
    cart_quantity: int = 1

    @property
    def line_total(self) -> float:
        return self.price * self.cart_quantity


class Customer(BaseModel):
    name: str = ''
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('email', 'phone', mode='before')
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


# Snapshot of a sold product, decoupled from later product changes
class OrderItem(BaseModel):
    id: Optional[str] = None
    order_id: str
    product_id: Optional[str]
    product_name: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class Order(BaseModel):
    id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    subtotal: float
    tax: float
    total: float
    status: str = 'completed'
    created_at: str
    order_items: List[OrderItem] = []

    @property
    def short_id(self) -> str:
        return self.id.split('-')[0]


class RawMaterial(BaseModel):
    id: str
    food_item: str
    ingredients: List[str] = []
