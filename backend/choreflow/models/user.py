"""Family member models"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    family_id: Optional[str] = None
    display_name: str = ""
    role: UserRole = UserRole.CHILD
    push_token: Optional[str] = None
    points: int = 0


class Family(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    member_ids: List[str] = Field(default_factory=list)
