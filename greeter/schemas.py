from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class UserInfo(BaseModel):
    """A user as described by query parameters or a JSON body.

    Validation is strict, so a string age or a numeric name makes the whole
    payload invalid. Unknown keys are ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    name: str = ""
    age: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    location: Optional[str] = None
    email: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _null_name(cls, value):
        return "" if value is None else value

    def compact(self) -> UserInfo:
        """Drop optional fields that carry no information.

        A zero age, empty strings and missing values disappear from the
        serialised output. Negative ages are kept as given.
        """
        return UserInfo(
            name=self.name,
            age=self.age or None,
            location=self.location or None,
            email=self.email or None,
        )


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: datetime
    version: str


class ErrorResponse(BaseModel):
    error: str


class UserCreatedResponse(BaseModel):
    message: str
    user: UserInfo


class BulkGreetResponse(BaseModel):
    greetings: list[str]
