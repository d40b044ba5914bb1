"""
Seed a demo account: restaurant, catalog, offers and one order taken through
the full event lifecycle.

Usage: python -m orderdesk.scripts.seed_demo
"""
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderdesk.core.config import get_settings
from orderdesk.core.security import hash_password
from orderdesk.models.item import Item
from orderdesk.models.order import Order
from orderdesk.models.restaurant import Restaurant
from orderdesk.models.user import User
from orderdesk.schemas.offer import OfferCreate
from orderdesk.schemas.order import OrderCreate, OrderItemInput
from orderdesk.services.offer_service import OfferService
from orderdesk.services.order_service import EventSourcedOrderService

DEMO_ITEMS = [
    ("Signature Burger", "BURGER", "Mains", Decimal("15.00")),
    ("Margherita Pizza", "PIZZA", "Mains", Decimal("13.50")),
    ("Fries", "FRIES", "Sides", Decimal("4.00")),
    ("Lemonade", "LEMONADE", "Drinks", Decimal("3.50")),
    ("Brownie", "BROWNIE", "Desserts", Decimal("5.00")),
]


def seed():
    settings = get_settings()
    engine = create_engine(settings.DATABASE_URL)
    Session = sessionmaker(bind=engine)
    db = Session()

    print("Checking for demo user...")
    email = "demo@orderdesk.dev"
    user = db.query(User).filter(User.email == email).first()

    if not user:
        print("Creating demo user...")
        user = User(
            email=email,
            hashed_password=hash_password("password")
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    else:
        print("Demo user already exists.")

    restaurant = db.query(Restaurant).filter(Restaurant.owner_id == user.id).first()
    if not restaurant:
        print("Creating demo restaurant...")
        restaurant = Restaurant(name="OrderDesk Bistro", owner_id=user.id, timezone="Europe/Madrid", currency="EUR")
        db.add(restaurant)
        db.commit()
        db.refresh(restaurant)

    print("Seeding catalog...")
    items = {}
    for name, sku, category, price in DEMO_ITEMS:
        item = db.query(Item).filter(Item.restaurant_id == restaurant.id, Item.sku == sku).first()
        if not item:
            item = Item(restaurant_id=restaurant.id, name=name, sku=sku, category=category, price=price)
            db.add(item)
            db.commit()
            db.refresh(item)
        items[sku] = item

    print("Seeding offers...")
    offers = OfferService(db, restaurant)
    demo_offers = [
        OfferCreate(
            name="Happy Hour 20%",
            type="happy_hour",
            value=Decimal("20"),
            max_discount=Decimal("10"),
            code="HAPPY20",
            auto_apply=True,
            is_stackable=True,
            valid_time_start="17:00",
            valid_time_end="19:00",
        ),
        OfferCreate(
            name="Welcome 5 off",
            type="fixed",
            value=Decimal("5"),
            code="WELCOME5",
            minimum_amount=Decimal("20"),
            usage_per_customer=1,
        ),
        OfferCreate(
            name="Fries 2x1",
            type="buy_x_get_y",
            code="FRIES2X1",
            auto_apply=True,
            target_item_ids=[items["FRIES"].id],
            conditions={"buy_quantity": 1, "get_quantity": 1},
        ),
        OfferCreate(
            name="Burger Combo",
            type="combo",
            value=Decimal("19.00"),
            code="COMBO",
            auto_apply=True,
            conditions={"combo_items": [str(items["BURGER"].id), str(items["FRIES"].id), str(items["LEMONADE"].id)]},
        ),
    ]
    for data in demo_offers:
        if not offers.code_exists(data.code):
            offers.create_offer(data)

    if db.query(Order).filter(Order.restaurant_id == restaurant.id).count() == 0:
        print("Creating demo order...")
        orders = EventSourcedOrderService(db, restaurant)
        order = orders.create_order(
            OrderCreate(table_number="4", customer_name="Ada", customer_email="ada@example.com"), user
        )
        orders.add_items(order, [
            OrderItemInput(item_id=items["BURGER"].id, quantity=1),
            OrderItemInput(item_id=items["FRIES"].id, quantity=2),
            OrderItemInput(item_id=items["LEMONADE"].id, quantity=1),
        ], user)
        orders.validate_items(order, user)
        orders.calculate_price(order, user)
        orders.calculate_promotions(order, actor=user)
        orders.set_payment_method(order, "card", user)
        orders.confirm(order, user)
        orders.process_payment(order, actor=user)
        print(f"Order {order.order_number}: total {order.total} ({order.version} events)")

    print("Done.")
    db.close()


if __name__ == "__main__":
    seed()
