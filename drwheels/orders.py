"""Order lifecycle.

An order's status drives the status of its car:

* creating an order moves the car from ``available`` to ``pending``;
* ``completed`` marks the car ``sold``;
* ``cancelled`` (by the seller via a status update, or by the buyer via
  :func:`cancel_order`) puts the car back to ``available``.

The status enum is the only gate on updates; transitions are not checked
for direction, and the car side effect is applied unconditionally.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import auth, models
from .errors import Forbidden, InvalidState, NotFound

logger = logging.getLogger(__name__)

CAR_STATUS_FOR_ORDER_STATUS = {
    "completed": "sold",
    "cancelled": "available",
}


def create_order(db: Session, buyer: models.User, car_id: int, notes: Optional[str] = None) -> models.Order:
    car = db.get(models.Car, car_id)
    if not car:
        raise NotFound("Car not found")
    if car.status != "available":
        raise InvalidState("Car is not available for purchase")
    if car.seller_id == buyer.id:
        raise InvalidState("You cannot purchase your own car")

    # Claim the car with a compare-and-swap so two buyers cannot both take it
    claimed = db.execute(
        update(models.Car)
        .where(models.Car.id == car.id, models.Car.status == "available")
        .values(status="pending", updated_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise InvalidState("Car is not available for purchase")

    order = models.Order(
        buyer_id=buyer.id,
        seller_id=car.seller_id,
        car_id=car.id,
        amount=car.price,
        status="pending",
        payment_status="pending",
        notes=notes,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    db.refresh(car)
    logger.info("order %s created: buyer=%s car=%s amount=%s", order.id, buyer.id, car.id, order.amount)
    return order


def _load(db: Session, order_id: int) -> models.Order:
    order = db.get(models.Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def _set_car_status(db: Session, order: models.Order, status: str) -> None:
    # Orders whose car was deleted keep a NULL car_id and get no side effect
    if order.car is not None:
        order.car.status = status


def get_order(db: Session, actor: models.User, order_id: int) -> models.Order:
    order = _load(db, order_id)
    if not auth.can_access(actor, order.buyer_id, order.seller_id):
        raise Forbidden()
    return order


def list_orders(db: Session, actor: models.User, role: str = "buyer") -> List[models.Order]:
    column = models.Order.seller_id if role == "seller" else models.Order.buyer_id
    stmt = (
        select(models.Order)
        .where(column == actor.id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    return list(db.scalars(stmt))


def update_order_status(
    db: Session,
    actor: models.User,
    order_id: int,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> models.Order:
    order = _load(db, order_id)
    if not auth.can_mutate(actor, order.seller_id):
        raise Forbidden()

    if status:
        order.status = status
        car_status = CAR_STATUS_FOR_ORDER_STATUS.get(status)
        if car_status:
            _set_car_status(db, order, car_status)
    if payment_status:
        order.payment_status = payment_status

    db.commit()
    db.refresh(order)
    logger.info(
        "order %s updated by user %s: status=%s payment_status=%s",
        order.id, actor.id, order.status, order.payment_status,
    )
    return order


def cancel_order(db: Session, actor: models.User, order_id: int) -> models.Order:
    order = _load(db, order_id)
    if not auth.can_mutate(actor, order.buyer_id):
        raise Forbidden()

    order.status = "cancelled"
    _set_car_status(db, order, "available")
    db.commit()
    db.refresh(order)
    logger.info("order %s cancelled by user %s", order.id, actor.id)
    return order
