"""
Pydantic schemas for the CrowdSpark API. Field names are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from crowdspark.types import CampaignStatus, Role, TransactionStatus

MAX_PASSWORD_BYTES = 72


class ApiModel(BaseModel):
    # Numbers must be finite; "Infinity" and "NaN" strings are rejected.
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False
    )


class MessageResponse(ApiModel):
    message: str


class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=72)
    role: str

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt rejects inputs over 72 bytes, not characters.
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded"
            )
        return value


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., max_length=72)


class UserResponse(ApiModel):
    id: str
    username: str
    email: str
    role: Role
    backed_campaigns: list[str]
    created_at: datetime


class UserSummary(ApiModel):
    id: str
    username: Optional[str] = None


class CampaignCreateRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    goal_amount: float = Field(..., gt=0)
    deadline: datetime
    image: str = Field(..., min_length=1)
    category: Optional[str] = None


class CampaignResponse(ApiModel):
    id: str
    title: str
    description: str
    goal_amount: float
    raised_amount: float
    deadline: datetime
    category: Optional[str] = None
    image: str
    status: CampaignStatus
    owner: UserSummary
    supporters: list[str]
    created_at: datetime


class CampaignCreatedResponse(ApiModel):
    message: str
    campaign: CampaignResponse


class CampaignSummary(ApiModel):
    id: str
    title: str
    image: str
    goal_amount: float
    raised_amount: float


class ContributionRequest(ApiModel):
    campaign_id: str
    amount: float = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=1000)


class TransactionResponse(ApiModel):
    id: str
    user: str
    campaign: str
    amount: float
    provider: str
    status: TransactionStatus
    message: str
    payment_id: str
    created_at: datetime


class CampaignTransactionResponse(ApiModel):
    id: str
    user: Optional[UserSummary] = None
    campaign: str
    amount: float
    provider: str
    status: TransactionStatus
    message: str
    payment_id: str
    created_at: datetime


class TransactionCreatedResponse(ApiModel):
    message: str
    transaction: TransactionResponse


class ContributionSummary(ApiModel):
    id: str
    title: str
    amount: float
    date: str


class CreateOrderRequest(ApiModel):
    # Checked by the handler so every bad value gets the same message.
    amount: Any = None


class OrderResponse(ApiModel):
    order_id: str
    amount: int
    currency: str


class ImageUploadRequest(ApiModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., pattern=r"^image/[a-z0-9.+-]+$")


class ImageUploadResponse(ApiModel):
    upload_url: str
    image_url: str
