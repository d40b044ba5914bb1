"""
Test configuration and fixtures.
"""
import os
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test settings before importing app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "orderdesk-test-suite-signing-key-0123456789")

from orderdesk.main import app
from orderdesk.db.base import Base
from orderdesk.db.session import get_db
from orderdesk.models import Item, Offer, Restaurant, User
from orderdesk.core.security import hash_password


# In-memory database shared across threads, rebuilt for every test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "testpassword123"

# Wednesday
FIXED_NOW = datetime(2026, 3, 4, 12, 0, 0)


class FakeClock:
    """Deterministic clock; every reading advances by ``step``."""

    def __init__(self, start: datetime = FIXED_NOW, step: timedelta = timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a database session for the test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create test client with database session override."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_user(db: Session) -> User:
    user = User(
        email="testuser@example.com",
        hashed_password=hash_password(TEST_PASSWORD),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def restaurant(db: Session, test_user: User) -> Restaurant:
    restaurant = Restaurant(
        name="Test Restaurant",
        owner_id=test_user.id,
        timezone="UTC",
        currency="USD",
    )
    db.add(restaurant)
    db.commit()
    db.refresh(restaurant)
    return restaurant


@pytest.fixture
def auth_headers(client: TestClient, test_user: User) -> dict:
    """Get auth headers for test user."""
    response = client.post(
        "/api/auth/login",
        json={"email": test_user.email, "password": TEST_PASSWORD}
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_with_restaurant(auth_headers: dict, restaurant: Restaurant) -> dict:
    """Get auth headers for a user that owns a restaurant."""
    return auth_headers


@pytest.fixture
def items(db: Session, restaurant: Restaurant) -> dict:
    """Small catalog keyed by SKU."""
    catalog = {
        "burger": Item(restaurant_id=restaurant.id, name="Burger", sku="BURGER", category="Mains", price=Decimal("15.00")),
        "fries": Item(restaurant_id=restaurant.id, name="Fries", sku="FRIES", category="Sides", price=Decimal("4.00")),
        "soda": Item(restaurant_id=restaurant.id, name="Soda", sku="SODA", category="Drinks", price=Decimal("3.00")),
    }
    db.add_all(catalog.values())
    db.commit()
    for item in catalog.values():
        db.refresh(item)
    return catalog


@pytest.fixture
def make_offer(db: Session, restaurant: Restaurant):
    """Factory for persisted offers."""
    def _make(**kwargs) -> Offer:
        values = {
            "name": "Test Offer",
            "type": "percentage",
            "value": Decimal("10"),
            "is_active": True,
            "auto_apply": False,
            "is_stackable": False,
            "priority": 0,
            "usage_count": 0,
        }
        values.update(kwargs)
        offer = Offer(restaurant_id=restaurant.id, **values)
        db.add(offer)
        db.commit()
        db.refresh(offer)
        return offer

    return _make
