from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base

USER_ROLES = ("user", "admin")
CAR_STATUSES = ("available", "pending", "sold")
ORDER_STATUSES = ("pending", "confirmed", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "refunded")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # stored lower-cased so uniqueness is case-insensitive
    email = Column(String(254), nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String(50), nullable=False)
    role = Column(String, nullable=False, default="user", index=True)

    cars = relationship("Car", back_populates="seller")


class Car(TimestampMixin, Base):
    __tablename__ = "cars"
    __table_args__ = (
        CheckConstraint("average_rating >= 0 AND average_rating <= 5", name="ck_cars_rating_range"),
        CheckConstraint("review_count >= 0", name="ck_cars_review_count"),
    )

    id = Column(Integer, primary_key=True, index=True)
    make = Column(String(50), nullable=False, index=True)
    model = Column(String(50), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False, index=True)
    mileage = Column(Integer, nullable=False, default=0)
    color = Column(String(30), nullable=True)
    description = Column(Text, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="available", index=True)
    # Aggregate over the car's reviews; only ratings.recompute_car_rating writes these
    average_rating = Column(Float, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)

    seller = relationship("User", back_populates="cars")
    reviews = relationship("Review", back_populates="car", cascade="all, delete-orphan")
    favorites = relationship("Favorite", back_populates="car", cascade="all, delete-orphan")
    # orders outlive the car; the ORM nulls out orders.car_id on delete
    orders = relationship("Order", back_populates="car")


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    payment_status = Column(String, nullable=False, default="pending")
    notes = Column(Text, nullable=True)

    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    car = relationship("Car", back_populates="orders")


class Review(TimestampMixin, Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("car_id", "user_id", name="uq_reviews_car_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    car_id = Column(Integer, ForeignKey("cars.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)

    car = relationship("Car", back_populates="reviews")
    user = relationship("User")


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "car_id", name="uq_favorites_user_car"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User")
    car = relationship("Car", back_populates="favorites")


class Chat(TimestampMixin, Base):
    __tablename__ = "chats"
    __table_args__ = (
        # participants are stored lower id first, so each pair has one chat
        UniqueConstraint("participant_a_id", "participant_b_id", name="uq_chats_pair"),
        CheckConstraint("participant_a_id < participant_b_id", name="ck_chats_pair_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    participant_a_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    participant_b_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    participant_a = relationship("User", foreign_keys=[participant_a_id])
    participant_b = relationship("User", foreign_keys=[participant_b_id])
    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="[Message.timestamp, Message.id]",
    )

    @property
    def participants(self):
        return [self.participant_a, self.participant_b]

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant_a_id, self.participant_b_id)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    chat = relationship("Chat", back_populates="messages")
