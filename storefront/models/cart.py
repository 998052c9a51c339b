from typing import Optional, Tuple
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from storefront.core.utils import utcnow

CartKey = Tuple[str, str]

class CartItem(BaseModel):
    """A line in a shopper's cart, unique by (product_id, variant_id)."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    variant_id: str
    quantity: int

    @property
    def key(self) -> CartKey:
        return (self.product_id, self.variant_id)

    def with_quantity(self, quantity: int) -> "CartItem":
        return self.model_copy(update={"quantity": quantity})


class UserCart(SQLModel, table=True):
    __tablename__ = "user_carts"

    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    profile_id: int = Field(foreign_key="user.id", index=True)
    product_id: str
    variant_id: str = Field(index=True)

    # Cart Details
    quantity: int = Field(default=1, ge=1)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def key(self) -> CartKey:
        return (self.product_id, self.variant_id)

    def to_item(self) -> CartItem:
        return CartItem(product_id=self.product_id, variant_id=self.variant_id, quantity=self.quantity)
