"""
Database Schemas for the Storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase class name.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

from order_status import OrderStatus


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")


class User(BaseModel):
    is_anonymous: bool = Field(True, description="Anonymous identity assigned on first visit")
    created_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=3, description="Product name")
    description: str = Field(..., min_length=10, description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    image_url: str = Field(..., description="Public image URL")


class OrderItem(BaseModel):
    product_id: str
    name: str = Field(..., description="Snapshot of product name at purchase time")
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    customer_name: str
    customer_phone: str
    customer_address: str
    location: Optional[Location] = Field(None, description="Customer supplied delivery coordinates")
    delivery_location: Optional[Location] = Field(None, description="Last known delivery person position")
    order_date: datetime
    order_items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    payment_screenshot_url: Optional[str] = None
    status: OrderStatus = Field(OrderStatus.PENDING)


class AdminSession(BaseModel):
    token: str
    created_at: datetime
    expires_at: datetime


# These schemas are used for validation/documentation by the database viewer and backend.
