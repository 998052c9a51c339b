from typing import Optional
from datetime import datetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from storefront.core.utils import utcnow

class UserFavorite(SQLModel, table=True):
    __tablename__ = "user_favorites"

    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    profile_id: int = Field(foreign_key="user.id", index=True)
    product_id: str = Field(index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def key(self) -> str:
        return self.product_id
