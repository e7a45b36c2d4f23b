"""Request and response models.

These models are the single rule table for input validation: every
field's requirement, check and sanitizer is declared here once and
enforced for every route that accepts it.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from .utils import escape_text, round_amount

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)

CarStatus = Literal["available", "pending", "sold"]
OrderStatus = Literal["pending", "confirmed", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "refunded"]
SortField = Literal["createdAt", "price", "year", "mileage", "averageRating"]
SortOrder = Literal["asc", "desc"]

# Largest value a signed 64-bit INTEGER column holds
MAX_ID = 2**63 - 1
ID = Annotated[int, Field(ge=1, le=MAX_ID)]


class APIModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _max_year() -> int:
    return date.today().year + 1


# -------------------- Users / auth --------------------

def _normalize_email(v):
    if isinstance(v, str):
        v = v.strip().lower()
        if not 5 <= len(v) <= 254:
            raise ValueError("Please provide a valid email address")
    return v


class UserCreate(APIModel):
    email: EmailStr
    password: str
    name: str

    @field_validator("email", mode="before")
    def normalize_email(cls, v):
        return _normalize_email(v)

    @field_validator("password")
    def strong_password(cls, v: str):
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return v

    @field_validator("name")
    def valid_name(cls, v: str):
        v = v.strip()
        if not 2 <= len(v) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        if not NAME_PATTERN.match(v):
            raise ValueError("Name can only contain letters and spaces")
        return v


class LoginRequest(APIModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    def normalize_email(cls, v):
        return _normalize_email(v)


class UserRead(APIModel):
    id: int
    email: str
    name: str
    role: str = "user"


class UserSummary(APIModel):
    id: int
    name: str
    email: str


class TokenResponse(APIModel):
    token: str
    user: UserRead


# -------------------- Cars --------------------

class CarBase(APIModel):
    @field_validator("make", "model", "color", "description", mode="before", check_fields=False)
    def trim(cls, v):
        # Length limits apply to the trimmed value
        return v.strip() if isinstance(v, str) else v

    @field_validator("make", "model", "color", "description", check_fields=False)
    def escape(cls, v: Optional[str], info: ValidationInfo):
        v = escape_text(v)
        if v == "" and info.field_name in ("make", "model"):
            raise ValueError(f"{info.field_name.capitalize()} must be between 1 and 50 characters")
        return v

    @field_validator("price", check_fields=False)
    def round_price(cls, v: Optional[Decimal]):
        if v is None:
            return v
        return round_amount(v)

    @field_validator("year", check_fields=False)
    def valid_year(cls, v: Optional[int]):
        if v is not None and not 1900 <= v <= _max_year():
            raise ValueError("Year must be a valid year")
        return v

    @field_validator("images", check_fields=False)
    def valid_images(cls, v: Optional[List[str]]):
        if v is None:
            return v
        for url in v:
            if not URL_PATTERN.match(url):
                raise ValueError("Each image must be a valid URL")
        return v


class CarCreate(CarBase):
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=50)
    year: int
    price: Decimal = Field(..., ge=0)
    mileage: int = Field(default=0, ge=0)
    color: Optional[str] = Field(default=None, max_length=30)
    description: Optional[str] = Field(default=None, max_length=2000)
    images: List[str] = Field(default_factory=list)


class CarUpdate(CarBase):
    make: Optional[str] = Field(default=None, min_length=1, max_length=50)
    model: Optional[str] = Field(default=None, min_length=1, max_length=50)
    year: Optional[int] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    mileage: Optional[int] = Field(default=None, ge=0)
    color: Optional[str] = Field(default=None, max_length=30)
    description: Optional[str] = Field(default=None, max_length=2000)
    images: Optional[List[str]] = None
    status: Optional[CarStatus] = None


class CarRead(APIModel):
    id: int
    make: str
    model: str
    year: int
    price: Decimal
    mileage: int
    color: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = []
    seller: Optional[UserSummary] = None
    status: CarStatus
    average_rating: float
    review_count: int
    created_at: datetime
    updated_at: datetime


class CarSummary(APIModel):
    id: int
    make: str
    model: str
    year: int
    price: Decimal
    images: List[str] = []


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CarPage(BaseModel):
    cars: List[CarRead]
    pagination: Pagination


# -------------------- Favorites --------------------

class FavoriteCreate(APIModel):
    car_id: ID


class FavoriteRead(APIModel):
    id: int
    user_id: int
    car: CarSummary
    created_at: datetime


class FavoriteCheck(APIModel):
    is_favorite: bool


# -------------------- Reviews --------------------

class ReviewCreate(APIModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None

    @field_validator("comment")
    def non_empty_comment(cls, v: Optional[str]):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Comment cannot be empty if provided")
        if len(v) > 1000:
            raise ValueError("Comment must be between 1 and 1000 characters")
        v = escape_text(v)
        if not v:
            raise ValueError("Comment cannot be empty if provided")
        return v


class ReviewUpdate(APIModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = None

    @field_validator("comment")
    def short_comment(cls, v: Optional[str]):
        if v is not None and len(v.strip()) > 1000:
            raise ValueError("Comment must be less than 1000 characters")
        return escape_text(v)


class ReviewRead(APIModel):
    id: int
    car_id: int
    user: UserSummary
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserReviewRead(ReviewRead):
    # A user's own review list shows which car each review is about
    car: Optional[CarSummary] = None


# -------------------- Orders --------------------

class OrderCreate(APIModel):
    car_id: ID
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("notes")
    def escape_notes(cls, v: Optional[str]):
        return escape_text(v)


class OrderStatusUpdate(APIModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


class OrderRead(APIModel):
    id: int
    buyer: UserSummary
    seller: UserSummary
    car: Optional[CarSummary] = None
    amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# -------------------- Chat --------------------

class ChatCreate(APIModel):
    participant_id: ID


class MessageCreate(APIModel):
    content: str

    @field_validator("content")
    def escape_content(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        if len(v) > 2000:
            raise ValueError("Message must be less than 2000 characters")
        v = escape_text(v)
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class MessageRead(APIModel):
    id: int
    sender_id: int
    content: str
    timestamp: datetime


class ChatRead(APIModel):
    id: int
    participants: List[UserSummary]
    messages: List[MessageRead] = []
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    message: str
