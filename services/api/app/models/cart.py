from __future__ import annotations

from pydantic import BaseModel, Field


class CartItemAddRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: int
    line_total: int
    in_stock: bool
    on_sale: bool
    discount_percentage: int


class CartOut(BaseModel):
    id: int
    items: list[CartItemOut]
    items_count: int
    subtotal: int


class CartIssue(BaseModel):
    product_id: int
    product_name: str
    requested: int
    available: int


class CartValidation(BaseModel):
    valid: bool
    issues: list[CartIssue] = Field(default_factory=list)
