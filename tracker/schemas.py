from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Literal, Optional


class CamelModel(BaseModel):
    """
    Payloads use the web client's camelCase names.

    populate_by_name lets Python code build them with snake_case.
    """
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(BaseModel):
    """
    Login payload validation.

    No length rules here: a wrong password should fail the same way
    whether it is short or long.
    """
    username: str
    password: str


class TokenResponse(BaseModel):
    token: str


class UserResponse(CamelModel):
    """
    Safe user representation for API responses.

    Critical: Never include hash_password in any response.
    """
    user_id: int = Field(alias="userId")
    username: str
    person_name: str = Field(alias="personName")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class MessageResponse(BaseModel):
    """
    Generic message response for operations without specific return data.
    """
    message: str


class SharingTokenRequest(BaseModel):
    token: str

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Token is required")
        return v.strip()


class UnsubscribeRequest(CamelModel):
    encrypted_user_id: str = Field(alias="encryptedUserId")


class ConnectionResponse(CamelModel):
    person_name: str = Field(alias="personName")
    encrypted_user_id: str = Field(alias="encryptedUserId")


class TransactionCreate(CamelModel):
    amount: float
    currency: str = "CAD"
    occurred_at: datetime = Field(alias="occurredAt")
    merchant: str
    card: str = ""
    category: str = "Unknown"
    details: Optional[str] = None
    tags: list[str] = []


class TransactionPatch(CamelModel):
    """
    Partial update. Only fields present in the request are written;
    tags, when present, replace the transaction's whole tag set.
    """
    id: int
    amount: Optional[float] = None
    currency: Optional[str] = None
    occurred_at: Optional[datetime] = Field(default=None, alias="occurredAt")
    merchant: Optional[str] = None
    card: Optional[str] = None
    category: Optional[str] = None
    details: Optional[str] = None
    tags: Optional[list[str]] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Transaction ID is required")
        return v

    def field_changes(self) -> dict:
        """Column values explicitly supplied by the caller, tags excluded."""
        return self.model_dump(exclude_unset=True, exclude={"id", "tags"})


class TransactionDelete(BaseModel):
    id: int


class BulkTagRequest(BaseModel):
    transaction_ids: list[int]
    tag: str
    action: Literal["add", "remove"]

    @field_validator("transaction_ids")
    @classmethod
    def validate_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one transaction is required")
        return v

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        if not v:
            raise ValueError("Tag is required")
        return v


class BulkCategoryRequest(BaseModel):
    transaction_ids: list[int]
    category: str

    @field_validator("transaction_ids")
    @classmethod
    def validate_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one transaction is required")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if not v:
            raise ValueError("Category is required")
        return v


class TransactionResponse(CamelModel):
    id: int
    amount: float
    currency: str
    occurred_at: datetime = Field(alias="occurredAt")
    merchant: str
    person_name: str = Field(alias="personName")
    card: str
    category: str
    details: Optional[str] = None
    tags: list[str]
    photos: list[str]


class PhotoDeleteRequest(CamelModel):
    file_path: str = Field(alias="filePath")


class PhotoResponse(CamelModel):
    photo_url: str = Field(alias="photoUrl")
