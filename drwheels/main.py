import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException

from . import auth, config, crud, listing, models, orders, ratings, schemas
from .db import Base, engine, get_db
from .errors import MarketplaceError, ValidationFailed
from .security import (
    ParameterPollutionMiddleware,
    RateLimitMiddleware,
    RequestSanitizerMiddleware,
    SecurityHeadersMiddleware,
    default_tiers,
)

logging.basicConfig(
    level=config.state.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

PathID = Annotated[int, Path(ge=1, le=schemas.MAX_ID)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables if not existing. Schema changes go through migration/ scripts.
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="DrWheels Marketplace API", lifespan=lifespan)

# Shared with tests so limits can be reset between cases
rate_limit_tiers = default_tiers()

# Added innermost first: requests pass CORS, headers, limits, pollution filter, sanitizer
app.add_middleware(RequestSanitizerMiddleware)
app.add_middleware(ParameterPollutionMiddleware)
app.add_middleware(RateLimitMiddleware, tiers=rate_limit_tiers)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.state.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------- Error mapping --------------------

def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or ".".join(str(p) for p in loc)


def _message(error: dict) -> str:
    ctx = error.get("ctx") or {}
    if error.get("type") == "value_error" and "error" in ctx:
        return str(ctx["error"])
    return error.get("msg", "Invalid value")


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse({"error": exc.message, "details": exc.details}, status_code=exc.status_code)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": _field_name(err.get("loc", ())), "message": _message(err)} for err in exc.errors()
    ]
    return JSONResponse({"error": "Validation failed", "details": details}, status_code=400)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# -------------------- Health --------------------

@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# -------------------- Auth --------------------

@app.post("/api/auth/register", response_model=schemas.TokenResponse, status_code=201)
async def register(payload: schemas.UserCreate, db: Session = Depends(get_db)):
    user = crud.create_user(db, payload)
    token = auth.create_access_token(user.id, user.role)
    return {"token": token, "user": user}


@app.post("/api/auth/login", response_model=schemas.TokenResponse)
async def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, payload.email, payload.password)
    token = auth.create_access_token(user.id, user.role)
    return {"token": token, "user": user}


@app.get("/api/auth/me", response_model=schemas.UserRead)
async def me(current: models.User = Depends(auth.get_current_user)):
    return current


# -------------------- Cars --------------------

@app.get("/api/cars", response_model=schemas.CarPage)
async def list_cars(
    search: Optional[str] = Query(None, max_length=100),
    make: Optional[str] = Query(None, max_length=50),
    model: Optional[str] = Query(None, max_length=50),
    color: Optional[str] = Query(None, max_length=30),
    year: Optional[int] = Query(None, ge=1900),
    min_year: Optional[int] = Query(None, alias="minYear", ge=1900),
    max_year: Optional[int] = Query(None, alias="maxYear", ge=1900),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    min_mileage: Optional[int] = Query(None, alias="minMileage", ge=0),
    max_mileage: Optional[int] = Query(None, alias="maxMileage", ge=0),
    sort_by: schemas.SortField = Query("createdAt", alias="sortBy"),
    sort_order: schemas.SortOrder = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = listing.CarQuery(
        search=search, make=make, model=model, color=color, year=year,
        min_year=min_year, max_year=max_year, min_price=min_price, max_price=max_price,
        min_mileage=min_mileage, max_mileage=max_mileage, sort_by=sort_by,
        sort_order=sort_order, page=page, limit=limit,
    )
    cars, pagination = listing.search_cars(db, query)
    return {"cars": cars, "pagination": pagination}


@app.get("/api/cars/my-cars", response_model=List[schemas.CarRead])
async def my_cars(current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.list_cars_by_seller(db, current.id)


@app.get("/api/cars/{car_id}", response_model=schemas.CarRead)
async def get_car(car_id: PathID, db: Session = Depends(get_db)):
    return crud.get_car(db, car_id)


@app.post("/api/cars", response_model=schemas.CarRead, status_code=201)
async def create_car(
    payload: schemas.CarCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.create_car(db, current, payload)


@app.put("/api/cars/{car_id}", response_model=schemas.CarRead)
async def update_car(
    car_id: PathID,
    payload: schemas.CarUpdate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.update_car(db, current, car_id, payload)


@app.delete("/api/cars/{car_id}", response_model=schemas.MessageResponse)
async def delete_car(car_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    crud.delete_car(db, current, car_id)
    return {"message": "Car deleted successfully"}


# -------------------- Favorites --------------------

@app.post("/api/favorites", response_model=schemas.FavoriteRead, status_code=201)
async def add_favorite(
    payload: schemas.FavoriteCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.add_favorite(db, current, payload.car_id)


@app.get("/api/favorites", response_model=List[schemas.CarRead])
async def list_favorites(current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.list_favorite_cars(db, current)


@app.get("/api/favorites/check/{car_id}", response_model=schemas.FavoriteCheck)
async def check_favorite(car_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return {"is_favorite": crud.find_favorite(db, current.id, car_id) is not None}


@app.delete("/api/favorites/{car_id}", response_model=schemas.MessageResponse)
async def remove_favorite(car_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    crud.remove_favorite(db, current, car_id)
    return {"message": "Favorite removed successfully"}


# -------------------- Reviews --------------------

@app.post("/api/reviews/car/{car_id}", response_model=schemas.ReviewRead, status_code=201)
async def create_review(
    car_id: PathID,
    payload: schemas.ReviewCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return ratings.create_review(db, current, car_id, payload.rating, payload.comment)


@app.get("/api/reviews/car/{car_id}", response_model=List[schemas.ReviewRead])
async def car_reviews(car_id: PathID, db: Session = Depends(get_db)):
    return ratings.list_reviews_for_car(db, car_id)


@app.get("/api/reviews/user", response_model=List[schemas.UserReviewRead])
async def my_reviews(current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return ratings.list_reviews_by_user(db, current)


@app.put("/api/reviews/{review_id}", response_model=schemas.ReviewRead)
async def update_review(
    review_id: PathID,
    payload: schemas.ReviewUpdate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return ratings.update_review(db, current, review_id, changes)


@app.delete("/api/reviews/{review_id}", response_model=schemas.MessageResponse)
async def delete_review(review_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    ratings.delete_review(db, current, review_id)
    return {"message": "Review deleted successfully"}


# -------------------- Orders --------------------

@app.post("/api/orders", response_model=schemas.OrderRead, status_code=201)
async def create_order(
    payload: schemas.OrderCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return orders.create_order(db, current, payload.car_id, payload.notes)


@app.get("/api/orders", response_model=List[schemas.OrderRead])
async def list_orders(
    order_type: Literal["buyer", "seller"] = Query("buyer", alias="type"),
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return orders.list_orders(db, current, role=order_type)


@app.get("/api/orders/{order_id}", response_model=schemas.OrderRead)
async def get_order(order_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return orders.get_order(db, current, order_id)


@app.put("/api/orders/{order_id}/status", response_model=schemas.OrderRead)
async def update_order_status(
    order_id: PathID,
    payload: schemas.OrderStatusUpdate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return orders.update_order_status(db, current, order_id, payload.status, payload.payment_status)


@app.post("/api/orders/{order_id}/cancel", response_model=schemas.MessageResponse)
async def cancel_order(order_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    orders.cancel_order(db, current, order_id)
    return {"message": "Order cancelled successfully"}


# -------------------- Chat --------------------

@app.get("/api/chat", response_model=List[schemas.ChatRead])
async def list_chats(current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.list_chats(db, current)


@app.get("/api/chat/{chat_id}", response_model=schemas.ChatRead)
async def get_chat(chat_id: PathID, current: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return crud.get_chat(db, current, chat_id)


@app.post("/api/chat", response_model=schemas.ChatRead, status_code=201)
async def create_chat(
    payload: schemas.ChatCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_or_create_chat(db, current, payload.participant_id)


@app.post("/api/chat/{chat_id}/messages", response_model=schemas.ChatRead)
async def send_message(
    chat_id: PathID,
    payload: schemas.MessageCreate,
    current: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.send_message(db, current, chat_id, payload.content)
