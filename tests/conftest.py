import os

os.environ.setdefault("DRWHEELS_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-jwt-tokens")

from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from drwheels import auth, config, models
from drwheels.db import Base
from drwheels.main import app, get_db, rate_limit_tiers

PASSWORD = "SecurePass123!@#"


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def rate_limited():
    config.set_rate_limiting(True)
    for tier in rate_limit_tiers:
        tier.reset()
    try:
        yield rate_limit_tiers
    finally:
        config.set_rate_limiting(False)
        for tier in rate_limit_tiers:
            tier.reset()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(email=None, role="user", name="Test User", password=PASSWORD):
        counter["n"] += 1
        user = models.User(
            email=(email or f"user{counter['n']}@example.com").lower(),
            name=name,
            role=role,
            password_hash=auth.hash_password(password),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {auth.create_access_token(user.id, user.role)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def make_car(db_session):
    def _make(seller, **overrides):
        fields = {
            "make": "Toyota",
            "model": "Camry",
            "year": 2020,
            "price": Decimal("25000.00"),
            "mileage": 10000,
            "color": "Blue",
            "description": "A reliable sedan",
            "status": "available",
            "images": [],
        }
        fields.update(overrides)
        car = models.Car(seller_id=seller.id, **fields)
        db_session.add(car)
        db_session.commit()
        db_session.refresh(car)
        return car

    return _make


@pytest.fixture
def make_order(db_session):
    def _make(buyer, seller, car, **overrides):
        fields = {"amount": car.price, "status": "pending", "payment_status": "pending"}
        fields.update(overrides)
        order = models.Order(buyer_id=buyer.id, seller_id=seller.id, car_id=car.id, **fields)
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def make_review(db_session):
    def _make(user, car, rating=5, comment="Great car!"):
        review = models.Review(user_id=user.id, car_id=car.id, rating=rating, comment=comment)
        db_session.add(review)
        db_session.commit()
        db_session.refresh(review)
        return review

    return _make
