"""Request bodies of the HTTP API."""

from pydantic import BaseModel, Field


class InvalidateRequest(BaseModel):
    pattern: str = Field(default="*", min_length=1, max_length=512)


class LoginAttempt(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=256)
