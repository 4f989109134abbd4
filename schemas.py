"""
Database Schemas for the Logistics backend

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: system users (admin, agent, customer, store) with their saved locations
- order: customer orders waiting for fulfillment

Location is not a collection: it lives inline in user.locations.
"""

from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, EmailStr, Field

Role = Literal["admin", "agent", "customer", "store"]
OrderStatus = Literal["queued", "processing", "fulfilled"]

COORDINATES_MESSAGE = "Coordinates must be an array of exactly 2 numbers [longitude, latitude]"


def normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


EmailId = Annotated[EmailStr, BeforeValidator(normalize_email)]


def check_coordinates(value: List[float]) -> List[float]:
    if len(value) != 2:
        raise ValueError(COORDINATES_MESSAGE)
    return value


def check_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Location name must not be empty")
    return value


Coordinates = Annotated[List[float], AfterValidator(check_coordinates)]
LocationName = Annotated[str, AfterValidator(check_name)]


class Location(BaseModel):
    name: LocationName = Field(..., description="Label unique within the owning user, e.g. 'home'")
    coordinates: Coordinates = Field(..., description="[longitude, latitude]")
    addressNo: Optional[int] = None
    zonalNo: Optional[int] = None


class LocationUpdate(BaseModel):
    """Partial location fields; only the ones explicitly set are applied."""
    name: Optional[LocationName] = None
    coordinates: Optional[Coordinates] = None
    addressNo: Optional[int] = None
    zonalNo: Optional[int] = None


class User(BaseModel):
    emailId: EmailId
    passwordHash: str = Field(..., description="BCrypt hash of password")
    role: Role
    locations: List[Location] = Field(default_factory=list)


class OrderItem(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Order(BaseModel):
    orderId: str = Field(..., description="Application level order identifier")
    customerId: str = Field(..., description="Reference to user _id (customer)")
    items: List[OrderItem] = Field(..., min_length=1)
    dropAddressNo: int = Field(..., description="Customer address number to deliver to")
    storeAddressNo: Optional[int] = Field(None, description="Store address number for pickup")
    agentId: Optional[str] = None
    storeId: Optional[str] = None
    status: OrderStatus = Field("queued")
