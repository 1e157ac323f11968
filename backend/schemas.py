# backend/schemas.py
import json
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

MAX_HTML_BYTES = 2 * 1024 * 1024
MAX_FORM_DATA_BYTES = 1024 * 1024
UPGRADE_AMOUNT = 50


def _default_if_blank(value, default):
    if value is None or not value.strip():
        return default
    return value.strip()


def _form_data_size(value) -> int:
    return len(json.dumps(value, default=str).encode("utf-8"))


# Schema for saving a rendered CV
class CVCreate(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId", max_length=128)
    html_content: str = Field(..., alias="htmlContent", min_length=1)
    title: Optional[str] = Field(None, max_length=200, validate_default=True)
    industry: Optional[str] = Field(None, max_length=50, validate_default=True)
    template: Optional[str] = Field(None, max_length=50, validate_default=True)
    # Free-form snapshot of the generator form, kept for later editing
    form_data: Optional[dict[str, Any]] = Field(None, alias="formData")

    @field_validator("html_content")
    @classmethod
    def check_html(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("htmlContent cannot be empty")
        if len(value.encode("utf-8", "surrogatepass")) > MAX_HTML_BYTES:
            raise ValueError("htmlContent exceeds maximum size (2MB)")
        return value

    @field_validator("title")
    @classmethod
    def default_title(cls, value):
        return _default_if_blank(value, "My CV")

    @field_validator("industry")
    @classmethod
    def default_industry(cls, value):
        return _default_if_blank(value, "general")

    @field_validator("template")
    @classmethod
    def default_template(cls, value):
        return _default_if_blank(value, "modern")

    @field_validator("form_data")
    @classmethod
    def check_form_data(cls, value):
        if value is not None and _form_data_size(value) > MAX_FORM_DATA_BYTES:
            raise ValueError("formData exceeds maximum size (1MB)")
        return value


class CVSummary(BaseModel):
    id: str
    title: str
    template: str
    industry: str
    created_at: datetime = Field(serialization_alias="createdAt")
    last_accessed: Optional[datetime] = Field(None, serialization_alias="lastAccessed")
    download_count: int = Field(0, serialization_alias="downloadCount")
    is_public: bool = Field(False, serialization_alias="isPublic")

    class Config:
        from_attributes = True


class CVDetail(CVSummary):
    user_id: str = Field(serialization_alias="userId")
    html_content: Optional[str] = Field(None, serialization_alias="htmlContent")
    content_available: bool = Field(True, serialization_alias="contentAvailable")
    form_data: Optional[dict[str, Any]] = Field(None, serialization_alias="formData")
    original_size: int = Field(0, serialization_alias="originalSize")
    compressed_size: int = Field(0, serialization_alias="compressedSize")


class CVDownload(BaseModel):
    success: bool = True
    html: Optional[str] = None
    content_available: bool = Field(True, serialization_alias="contentAvailable")
    title: str
    template: str
    industry: str


# Payment-verification request submitted by a user
class UpgradeRequestCreate(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId", max_length=128)
    user_email: EmailStr = Field(..., alias="userEmail")
    user_name: Optional[str] = Field(None, alias="userName", max_length=100, validate_default=True)
    transaction_id: str = Field(..., alias="transactionId", max_length=100)
    payment_method: Literal["bikash", "nagad", "rocket"] = Field(..., alias="paymentMethod")
    payment_number: str = Field(..., alias="paymentNumber", min_length=1, max_length=20)
    amount: int = UPGRADE_AMOUNT

    @field_validator("transaction_id")
    @classmethod
    def check_transaction_id(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 8:
            raise ValueError("Transaction ID seems invalid. Please check and try again.")
        return value

    @field_validator("user_name")
    @classmethod
    def default_user_name(cls, value):
        return _default_if_blank(value, "User")

    @field_validator("user_email")
    @classmethod
    def lower_email(cls, value):
        return value.lower()

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value: int) -> int:
        if value != UPGRADE_AMOUNT:
            raise ValueError(f"amount must be {UPGRADE_AMOUNT}")
        return value


class UpgradeRequest(BaseModel):
    id: str
    user_id: str = Field(serialization_alias="userId")
    user_email: str = Field(serialization_alias="userEmail")
    user_name: str = Field(serialization_alias="userName")
    transaction_id: str = Field(serialization_alias="transactionId")
    payment_method: str = Field(serialization_alias="paymentMethod")
    payment_number: str = Field(serialization_alias="paymentNumber")
    amount: int
    status: str
    submitted_at: datetime = Field(serialization_alias="submittedAt")
    reviewed_by: Optional[str] = Field(None, serialization_alias="reviewedBy")
    reviewed_at: Optional[datetime] = Field(None, serialization_alias="reviewedAt")
    notes: str = ""

    class Config:
        from_attributes = True


class ReviewAction(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = Field(None, max_length=500)


class TokenGrant(BaseModel):
    amount: int = Field(..., gt=0, le=100000)


class GenerateRequest(BaseModel):
    form_data: dict[str, Any] = Field(..., alias="formData")
    template: str = Field("modern", max_length=50)
    industry: str = Field("technology", max_length=50)
    save: bool = False
    title: Optional[str] = Field(None, max_length=200)

    @field_validator("form_data")
    @classmethod
    def check_form_data(cls, value):
        if "personalInfo" not in value:
            raise ValueError("Personal information is required")
        if _form_data_size(value) > MAX_FORM_DATA_BYTES:
            raise ValueError("Form data exceeds maximum size (1MB)")
        return value


# Schema for returning user data in the response
class User(BaseModel):
    id: str
    email: str
    display_name: str = Field(serialization_alias="displayName")
    tokens: int
    is_pro: bool = Field(serialization_alias="isPro")
    role: str
    saved_cvs: int = Field(0, serialization_alias="savedCVs")
    total_generations: int = Field(0, serialization_alias="totalGenerations")
    last_login: Optional[datetime] = Field(None, serialization_alias="lastLogin")
    created_at: datetime = Field(serialization_alias="createdAt")

    class Config:
        from_attributes = True
