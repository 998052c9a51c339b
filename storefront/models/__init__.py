# Import all models to register them with SQLModel
from storefront.models.user import User
from storefront.models.cart import CartItem, UserCart
from storefront.models.favorite import UserFavorite

__all__ = [
    "User",
    "CartItem",
    "UserCart",
    "UserFavorite",
]
