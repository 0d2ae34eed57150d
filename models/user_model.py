from pydantic import BaseModel, Field, field_validator
from typing import Optional

class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=6)
    first_name: str
    last_name: str
    age: int = Field(ge=18, le=120)
    gender: str
    family_history: Optional[str] = ""
    medical_conditions: Optional[str] = ""

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v

class UserLogin(BaseModel):
    email: str
    password: str

class UserUpdate(BaseModel):
    first_name: str
    last_name: str
    age: int = Field(ge=18, le=120)
    gender: str
    family_history: Optional[str] = ""
    medical_conditions: Optional[str] = ""

class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    age: int
    gender: str
    family_history: Optional[str] = ""
    medical_conditions: Optional[str] = ""

class UserProfile(BaseModel):
    """Demographic view of a user consumed by the risk aggregator."""
    user_id: str
    age: int = 0
    family_history: Optional[str] = ""
    medical_conditions: Optional[str] = ""

    model_config = {"frozen": True}
