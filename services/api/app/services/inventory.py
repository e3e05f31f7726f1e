"""Product stock ledger.

Stock only ever moves through these two functions. Both issue a single UPDATE statement
inside the caller's transaction; neither commits.
"""

from __future__ import annotations

from services.api.app.db.models import Product
from sqlalchemy import select, update
from sqlalchemy.orm import Session


class InsufficientStockError(Exception):
    def __init__(self, product_id: int, product_name: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for product: {product_name}. Available stock: {available}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class UnknownProductError(Exception):
    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


def reserve(db: Session, product_id: int, quantity: int) -> None:
    """Decrement stock by quantity only if at least that much is available.

    Raises InsufficientStockError when the guarded update matches no row, which is how a
    concurrent checkout that committed first shows up.
    """

    if quantity <= 0:
        raise ValueError("quantity must be positive")

    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    row = db.execute(select(Product.name, Product.stock).where(Product.id == product_id)).first()
    if row is None:
        raise UnknownProductError(product_id)
    raise InsufficientStockError(
        product_id=product_id,
        product_name=row.name,
        available=row.stock,
        requested=quantity,
    )


def release(db: Session, product_id: int, quantity: int) -> None:
    """Put quantity back on the shelf. No upper bound: it was taken out by a checkout."""

    if quantity <= 0:
        raise ValueError("quantity must be positive")

    result = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise UnknownProductError(product_id)
