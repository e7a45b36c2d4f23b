from typing import List, Optional

from sqlalchemy import or_, and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import auth, models, schemas
from .errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed

# -------------------- Users --------------------


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.scalars(select(models.User).where(models.User.email == email.strip().lower())).first()


def create_user(db: Session, user: schemas.UserCreate, role: str = "user") -> models.User:
    if get_user_by_email(db, user.email):
        raise Conflict("User already exists")
    db_user = models.User(email=user.email, name=user.name, role=role)
    set_password(db_user, user.password)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("User already exists") from e
    db.refresh(db_user)
    return db_user


def set_password(user: models.User, password: str) -> None:
    # The only place a password is hashed; other updates leave the hash alone
    user.password_hash = auth.hash_password(password)


def authenticate_user(db: Session, email: str, password: str) -> models.User:
    user = get_user_by_email(db, email)
    # Same message for unknown email and wrong password
    if not user or not auth.verify_password(password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    return user


# -------------------- Cars --------------------


def get_car(db: Session, car_id: int) -> models.Car:
    car = db.get(models.Car, car_id)
    if not car:
        raise NotFound("Car not found")
    return car


def create_car(db: Session, seller: models.User, car: schemas.CarCreate) -> models.Car:
    db_car = models.Car(seller_id=seller.id, status="available", **car.model_dump())
    db.add(db_car)
    db.commit()
    db.refresh(db_car)
    return db_car


def update_car(db: Session, actor: models.User, car_id: int, changes: schemas.CarUpdate) -> models.Car:
    car = get_car(db, car_id)
    if not auth.can_mutate(actor, car.seller_id):
        raise Forbidden()
    for field, value in changes.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(car, field, value)
    db.commit()
    db.refresh(car)
    return car


def delete_car(db: Session, actor: models.User, car_id: int) -> None:
    car = get_car(db, car_id)
    if not auth.can_mutate(actor, car.seller_id):
        raise Forbidden()
    db.delete(car)
    db.commit()


def list_cars_by_seller(db: Session, seller_id: int) -> List[models.Car]:
    stmt = (
        select(models.Car)
        .where(models.Car.seller_id == seller_id)
        .order_by(models.Car.created_at.desc(), models.Car.id.desc())
    )
    return list(db.scalars(stmt))


# -------------------- Favorites --------------------


def add_favorite(db: Session, user: models.User, car_id: int) -> models.Favorite:
    get_car(db, car_id)
    if find_favorite(db, user.id, car_id):
        raise Conflict("Car already in favorites")
    favorite = models.Favorite(user_id=user.id, car_id=car_id)
    db.add(favorite)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("Car already in favorites") from e
    db.refresh(favorite)
    return favorite


def find_favorite(db: Session, user_id: int, car_id: int) -> Optional[models.Favorite]:
    stmt = select(models.Favorite).where(
        models.Favorite.user_id == user_id, models.Favorite.car_id == car_id
    )
    return db.scalars(stmt).first()


def remove_favorite(db: Session, user: models.User, car_id: int) -> None:
    favorite = find_favorite(db, user.id, car_id)
    if not favorite:
        raise NotFound("Favorite not found")
    db.delete(favorite)
    db.commit()


def list_favorite_cars(db: Session, user: models.User) -> List[models.Car]:
    stmt = (
        select(models.Favorite)
        .where(models.Favorite.user_id == user.id)
        .order_by(models.Favorite.created_at.desc(), models.Favorite.id.desc())
    )
    return [fav.car for fav in db.scalars(stmt)]


# -------------------- Chat --------------------


def _pair(a: int, b: int):
    return (a, b) if a < b else (b, a)


def list_chats(db: Session, user: models.User) -> List[models.Chat]:
    stmt = (
        select(models.Chat)
        .where(or_(models.Chat.participant_a_id == user.id, models.Chat.participant_b_id == user.id))
        .order_by(models.Chat.updated_at.desc(), models.Chat.id.desc())
    )
    return list(db.scalars(stmt))


def get_chat(db: Session, actor: models.User, chat_id: int) -> models.Chat:
    chat = db.get(models.Chat, chat_id)
    if not chat:
        raise NotFound("Chat not found")
    if not auth.can_access(actor, chat.participant_a_id, chat.participant_b_id):
        raise Forbidden()
    return chat


def get_or_create_chat(db: Session, actor: models.User, participant_id: int) -> models.Chat:
    if participant_id == actor.id:
        raise ValidationFailed(
            [{"field": "participantId", "message": "Cannot start a chat with yourself"}]
        )
    if not db.get(models.User, participant_id):
        raise NotFound("User not found")
    a, b = _pair(actor.id, participant_id)
    stmt = select(models.Chat).where(
        and_(models.Chat.participant_a_id == a, models.Chat.participant_b_id == b)
    )
    chat = db.scalars(stmt).first()
    if chat:
        return chat
    chat = models.Chat(participant_a_id=a, participant_b_id=b)
    db.add(chat)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with the other participant opening the same chat
        db.rollback()
        return db.scalars(stmt).one()
    db.refresh(chat)
    return chat


def send_message(db: Session, actor: models.User, chat_id: int, content: str) -> models.Chat:
    chat = get_chat(db, actor, chat_id)
    message = models.Message(sender_id=actor.id, content=content)
    chat.messages.append(message)
    chat.updated_at = models.utcnow()
    db.commit()
    db.refresh(chat)
    return chat
