"""Reviews and the rating aggregate stored on each car.

``Car.average_rating`` and ``Car.review_count`` are derived data: every
review write recomputes them for the affected car before committing.
The recompute aggregates over all of the car's reviews, which is fine for
the review volume a single listing gets.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import auth, models
from .errors import Conflict, Forbidden, NotFound
from .utils import round_rating

logger = logging.getLogger(__name__)

DUPLICATE_REVIEW = "You have already reviewed this car"


def recompute_car_rating(db: Session, car_id: int) -> Optional[models.Car]:
    db.flush()
    count, total = db.execute(
        select(func.count(models.Review.id), func.coalesce(func.sum(models.Review.rating), 0))
        .where(models.Review.car_id == car_id)
    ).one()
    car = db.get(models.Car, car_id)
    if car is None:
        return None
    car.review_count = count
    car.average_rating = float(round_rating(Decimal(total) / Decimal(count))) if count else 0.0
    logger.debug("car %s rating recomputed: avg=%s count=%s", car_id, car.average_rating, count)
    return car


def _load(db: Session, review_id: int) -> models.Review:
    review = db.get(models.Review, review_id)
    if not review:
        raise NotFound("Review not found")
    return review


def create_review(
    db: Session, user: models.User, car_id: int, rating: int, comment: Optional[str] = None
) -> models.Review:
    if not db.get(models.Car, car_id):
        raise NotFound("Car not found")
    existing = db.scalars(
        select(models.Review).where(models.Review.car_id == car_id, models.Review.user_id == user.id)
    ).first()
    if existing:
        raise Conflict(DUPLICATE_REVIEW)

    review = models.Review(car_id=car_id, user_id=user.id, rating=rating, comment=comment)
    db.add(review)
    try:
        recompute_car_rating(db, car_id)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict(DUPLICATE_REVIEW) from e
    db.refresh(review)
    return review


def update_review(db: Session, user: models.User, review_id: int, changes: dict) -> models.Review:
    review = _load(db, review_id)
    # Only the author edits a review; admins may delete but not rewrite it
    if review.user_id != user.id:
        raise Forbidden()
    for field in ("rating", "comment"):
        if field in changes:
            setattr(review, field, changes[field])
    recompute_car_rating(db, review.car_id)
    db.commit()
    db.refresh(review)
    return review


def delete_review(db: Session, actor: models.User, review_id: int) -> None:
    review = _load(db, review_id)
    if not auth.can_mutate(actor, review.user_id):
        raise Forbidden()
    car_id = review.car_id
    db.delete(review)
    recompute_car_rating(db, car_id)
    db.commit()


def list_reviews_for_car(db: Session, car_id: int) -> List[models.Review]:
    stmt = (
        select(models.Review)
        .where(models.Review.car_id == car_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
    )
    return list(db.scalars(stmt))


def list_reviews_by_user(db: Session, user: models.User) -> List[models.Review]:
    stmt = (
        select(models.Review)
        .where(models.Review.user_id == user.id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
    )
    return list(db.scalars(stmt))
