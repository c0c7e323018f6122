"""
Database Schemas for the Bashabari marketplace

Each Pydantic model validates the payload for one collection before any
write. Field names follow the stored camelCase documents.
- User -> "users"
- Property -> "properties"
- Offer -> "offers"
- WishlistItem -> "wishlist"
- Review -> "reviews"
"""

import logging
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

logger = logging.getLogger(__name__)

Role = Literal["user", "agent", "admin"]
PropertyStatus = Literal["pending", "verified", "fraud-removed"]
OfferStatus = Literal["pending", "accepted", "rejected"]

def validate_payload(model, payload, message: str):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        logger.debug("Rejected %s payload: %s", model.__name__, e.errors())
        raise ValidationError(message)

def _as_string(value):
    return str(value) if value is not None else value

PropertyRef = Annotated[str, BeforeValidator(_as_string), Field(min_length=1)]

class UserIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: EmailStr = Field(..., description="Unique email address")
    name: Optional[str] = Field(None, description="Display name")
    photo: Optional[str] = Field(None, description="Avatar URL")
    uid: Optional[str] = Field(None, description="Identity provider account id")

class RoleUpdate(BaseModel):
    role: Role

class PropertyIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    priceMin: float = Field(..., gt=0)
    priceMax: float = Field(..., gt=0)
    agentName: str = Field(..., min_length=1)
    agentEmail: EmailStr

class PropertyUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = Field(None, min_length=1)
    priceMin: Optional[float] = Field(None, gt=0)
    priceMax: Optional[float] = Field(None, gt=0)
    agentName: Optional[str] = Field(None, min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _no_nulls(cls, data):
        # Omit a field to keep it; these may never be cleared
        if isinstance(data, dict):
            cleared = [name for name in cls.model_fields if name in data and data[name] is None]
            if cleared:
                raise ValueError(f"{', '.join(cleared)} cannot be null")
        return data

class PropertyStatusUpdate(BaseModel):
    status: PropertyStatus

class WishlistIn(BaseModel):
    userEmail: EmailStr
    propertyId: PropertyRef

class OfferIn(BaseModel):
    # priceMin/priceMax sent by the client are ignored; bounds come from the property
    model_config = ConfigDict(extra="ignore")

    propertyId: PropertyRef
    buyerEmail: EmailStr
    buyerName: Optional[str] = None
    offerAmount: float = Field(..., gt=0)
    buyingDate: Optional[str] = None

class OfferStatusUpdate(BaseModel):
    status: OfferStatus
    propertyId: Optional[PropertyRef] = None

class ReviewIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    userEmail: EmailStr
    propertyId: PropertyRef
    rating: Optional[float] = Field(None, ge=1, le=5)
    comment: Optional[str] = None

class TokenRequest(BaseModel):
    idToken: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict
