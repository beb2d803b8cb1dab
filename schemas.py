"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in the database.
Model name lowercased is the collection name.

Field names are camelCase to match the documents already stored and
what the frontend reads.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    user = "user"
    admin = "admin"


class Category(str, Enum):
    men = "men"
    women = "women"
    kids = "kids"


class OrderStatus(str, Enum):
    pending = "Pending"
    shipped = "Shipped"
    delivered = "Delivered"


class MongoModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True, validate_default=True)


class User(MongoModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique, lowercased")
    password: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.user, description="Role: user | admin")
    isFirstLogin: bool = True
    wishlist: List[ObjectId] = Field(default_factory=list, description="Product ids, no duplicates")


class Product(MongoModel):
    name: str
    price: Union[int, float]
    image: str = Field(..., description="Public URL or /uploads/<file>")
    category: Category


class OrderLine(MongoModel):
    productId: ObjectId
    productName: str
    productPrice: Union[int, float]
    quantity: int


class Order(MongoModel):
    userId: ObjectId
    products: List[OrderLine] = Field(default_factory=list)
    totalAmount: Union[int, float]
    status: OrderStatus = OrderStatus.pending
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
