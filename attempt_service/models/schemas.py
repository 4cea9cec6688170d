from pydantic import BaseModel
from typing import Optional
from enum import Enum

class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"

class UserResponse(BaseModel):
    id: str
    role: UserRole
    name: Optional[str] = None
