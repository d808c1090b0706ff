import re
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional

STRONG_PASSWORD = re.compile(r"^(?=.*\d)(?=.*[a-z])(?=.*[A-Z])(?=.*\W).{8,}$")

class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=8, max_length=72)

    model_config = {"str_strip_whitespace": True}

class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    password: Optional[str] = Field(None, max_length=72)

    model_config = {"str_strip_whitespace": True, "extra": "forbid"}

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not STRONG_PASSWORD.match(v):
            raise ValueError(
                "Password must be at least 8 characters long and include at least one "
                "uppercase letter, one lowercase letter, one number, and one special character"
            )
        return v

class UserResponse(BaseModel):
    id: int
    email: EmailStr
    name: str

    model_config = {"from_attributes": True}

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    user: UserResponse

class RefreshRequest(BaseModel):
    refresh_token: str
