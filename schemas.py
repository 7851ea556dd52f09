from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import OperationType, UserRole


# Upper bound for a single operation amount, in currency units.
MAX_AMOUNT = Decimal("1000000000")


class OperationIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    category_id: int
    type: OperationType
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None
    user_id: Optional[int] = None


class OperationPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(
        default=None, gt=0, le=MAX_AMOUNT, allow_inf_nan=False
    )
    category_id: Optional[int] = None
    type: Optional[OperationType] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None

    @field_validator("amount", "category_id", "type", "date")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    type: OperationType

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name is required")
        return value


class UserCreateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    name: str = Field(..., min_length=2, max_length=50)
    password: str = Field(..., min_length=6, max_length=72)
    role: UserRole = UserRole.user


class UserPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    password: Optional[str] = Field(default=None, min_length=6, max_length=72)
    role: Optional[UserRole] = None


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=72)


class RebuildIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: int
