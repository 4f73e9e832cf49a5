from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    pic: Optional[str] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    pic: Optional[str] = None

class UserOut(BaseModel):
    id: str
    name: str
    email: str
    avatar: str
    is_online: bool = False
    last_seen: Optional[datetime] = None

class AuthResponse(BaseModel):
    token: str
    user: UserOut
