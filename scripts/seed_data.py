from __future__ import annotations

import argparse

from packages.shared.schemas.status_v1 import UserRoleV1
from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.models import Product, User
from sqlalchemy import select
from sqlalchemy.orm import Session

DEMO_USERS = (
    ("u-customer", "Awa Customer", "awa@example.ga", UserRoleV1.CUSTOMER),
    ("u-seller", "Boutique Okoumé", "vente@example.ga", UserRoleV1.SELLER),
    ("u-admin", "Marché Admin", "admin@example.ga", UserRoleV1.ADMIN),
)

# name, price, discount_price, shipping_cost, stock (FCFA)
DEMO_PRODUCTS = (
    ("Pagne wax 6 yards", 15000, 12000, None, 40),
    ("Sac en raphia", 8500, None, None, 25),
    ("Huile de palme 5L", 6000, None, 1500, 60),
    ("Téléphone Tecno Spark", 95000, 89000, 2000, 10),
    ("Panier tressé", 4500, None, None, 0),
)


def seed(db: Session, *, seller_id: str = "u-seller") -> dict[str, int]:
    """Insert the demo users and products that are missing. Safe to run repeatedly."""

    created = {"users": 0, "products": 0}

    for uid, name, email, role in DEMO_USERS:
        if db.get(User, uid) is None:
            db.add(User(id=uid, display_name=name, email=email, role=role.value))
            created["users"] += 1
    if seller_id not in {uid for uid, *_ in DEMO_USERS} and db.get(User, seller_id) is None:
        db.add(User(id=seller_id, display_name=seller_id, role=UserRoleV1.SELLER.value))
        created["users"] += 1
    db.flush()

    existing = set(db.execute(select(Product.name).where(Product.seller_id == seller_id)).scalars())
    for name, price, discount_price, shipping_cost, stock in DEMO_PRODUCTS:
        if name in existing:
            continue
        db.add(
            Product(
                seller_id=seller_id,
                name=name,
                price=price,
                discount_price=discount_price,
                shipping_cost=shipping_cost,
                stock=stock,
            )
        )
        created["products"] += 1

    db.commit()
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo Marché users and products")
    parser.add_argument("--seller-id", default="u-seller")
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        created = seed(db, seller_id=args.seller_id)
        print(f"Seeded users={created['users']} products={created['products']}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
