from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, validator


def _not_blank(value: str, label: str, max_length: int = 255) -> str:
    if not value or len(value.strip()) == 0:
        raise ValueError(f"{label} cannot be empty")
    if len(value) > max_length:
        raise ValueError(f"{label} cannot exceed {max_length} characters")
    return value.strip()


class UserCreate(BaseModel):
    username: str
    password: str

    @validator("username")
    def validate_username(cls, v: str) -> str:
        v = _not_blank(v, "Username")
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Username cannot exceed 50 characters")
        return v

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if not v or len(v) == 0:
            raise ValueError("Password cannot be empty")
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v


class UserLogin(BaseModel):
    username: str
    password: str


class CategoryCreate(BaseModel):
    name: str

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _not_blank(v, "Category name")


class MenuItemCreate(BaseModel):
    name: str
    price: Decimal
    image: Optional[str] = None
    description: Optional[str] = None
    weight: Optional[int] = None
    category_id: Optional[int] = None

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _not_blank(v, "Dish name")

    @validator("price")
    def validate_price(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price cannot be negative")
        if v >= Decimal("100000000"):
            raise ValueError("Price is too high")
        return round(v, 2)

    @validator("weight")
    def validate_weight(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("Weight cannot be negative")
        return v


class OrderCreate(BaseModel):
    username: str
    additionalRequests: Optional[str] = None
    orderedItemsIds: Optional[Union[str, List[int]]] = None

    @validator("username")
    def validate_username(cls, v: str) -> str:
        return _not_blank(v, "Username")

    @validator("orderedItemsIds")
    def join_ordered_items(cls, v):
        # Список id хранится как строка через запятую
        if isinstance(v, list):
            return ",".join(str(item_id) for item_id in v)
        return v


class CommentCreate(BaseModel):
    username: str
    dish_id: int
    comment: str

    @validator("username")
    def validate_username(cls, v: str) -> str:
        return _not_blank(v, "Username")

    @validator("comment")
    def validate_comment(cls, v: str) -> str:
        return _not_blank(v, "Comment", max_length=5000)
