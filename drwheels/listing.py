"""Public car search: filters, sorting and pagination over available cars."""
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from . import models
from .utils import escape_like, sanitize_input

SORT_COLUMNS = {
    "createdAt": models.Car.created_at,
    "price": models.Car.price,
    "year": models.Car.year,
    "mileage": models.Car.mileage,
    "averageRating": models.Car.average_rating,
}


@dataclass
class CarQuery:
    search: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_mileage: Optional[int] = None
    max_mileage: Optional[int] = None
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 12


def _contains(column, term: str):
    return column.ilike(f"%{escape_like(term)}%", escape="\\")


def build_filters(query: CarQuery) -> list:
    # Sold and pending cars never show up in public search
    filters = [models.Car.status == "available"]

    search = sanitize_input(query.search)
    if search:
        filters.append(
            or_(
                _contains(models.Car.make, search),
                _contains(models.Car.model, search),
                _contains(models.Car.description, search),
            )
        )

    if query.make:
        filters.append(_contains(models.Car.make, query.make))
    if query.model:
        filters.append(_contains(models.Car.model, query.model))
    if query.color:
        filters.append(_contains(models.Car.color, query.color))

    # An exact year wins over the year range
    if query.year is not None:
        filters.append(models.Car.year == query.year)
    else:
        if query.min_year is not None:
            filters.append(models.Car.year >= query.min_year)
        if query.max_year is not None:
            filters.append(models.Car.year <= query.max_year)

    if query.min_price is not None:
        filters.append(models.Car.price >= query.min_price)
    if query.max_price is not None:
        filters.append(models.Car.price <= query.max_price)
    if query.min_mileage is not None:
        filters.append(models.Car.mileage >= query.min_mileage)
    if query.max_mileage is not None:
        filters.append(models.Car.mileage <= query.max_mileage)
    return filters


def search_cars(db: Session, query: CarQuery) -> Tuple[List[models.Car], dict]:
    filters = build_filters(query)

    column = SORT_COLUMNS.get(query.sort_by, models.Car.created_at)
    if query.sort_order == "asc":
        ordering = (column.asc(), models.Car.id.asc())
    else:
        ordering = (column.desc(), models.Car.id.desc())

    stmt = (
        select(models.Car)
        .where(*filters)
        .order_by(*ordering)
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
    )
    cars = list(db.scalars(stmt))
    total = db.scalar(select(func.count(models.Car.id)).where(*filters)) or 0

    pagination = {
        "page": query.page,
        "limit": query.limit,
        "total": total,
        "pages": math.ceil(total / query.limit),
    }
    return cars, pagination
