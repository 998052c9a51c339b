from typing import Optional
from datetime import datetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from storefront.core.utils import utcnow

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: Optional[str] = None
    email: str = Field(unique=True, index=True)
    password_hash: str

    # Account Status
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
