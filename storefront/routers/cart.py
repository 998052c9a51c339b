from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.models.cart import CartItem
from storefront.routers.auth import get_shopper
from storefront.services.cart_store import CartStore
from storefront.services.sessions import ShopperSession

router = APIRouter()

class CartItemCreate(BaseModel):
    product_id: str
    variant_id: str
    quantity: int = Field(default=1, ge=1)

class CartItemUpdate(BaseModel):
    quantity: int

class CartResponse(BaseModel):
    items: List[CartItem]
    count: int
    is_empty: bool
    authenticated: bool
    error: Optional[str] = None

class CartValidationResponse(BaseModel):
    valid: bool
    invalid_items: List[CartItem]
    cart: CartResponse

def cart_response(shopper: ShopperSession) -> CartResponse:
    cart: CartStore = shopper.cart
    return CartResponse(
        items=cart.items.value,
        count=cart.count.value,
        is_empty=cart.is_empty.value,
        authenticated=shopper.context.is_authenticated,
        error=cart.error.value,
    )

def rejected(cart: CartStore, fallback: str) -> HTTPException:
    return HTTPException(status_code=409, detail=cart.error.value or fallback)

@router.get("/", response_model=CartResponse)
async def get_cart(shopper: ShopperSession = Depends(get_shopper)):
    """Get the device's cart"""
    return cart_response(shopper)

@router.get("/summary")
async def get_cart_summary(shopper: ShopperSession = Depends(get_shopper)):
    """Cart lines priced from the catalog"""
    return await shopper.cart.summary()

@router.post("/items", response_model=CartResponse)
async def add_to_cart(cart_item: CartItemCreate, shopper: ShopperSession = Depends(get_shopper)):
    """Add item to cart, or increase its quantity if already present"""
    if not await shopper.cart.add(cart_item.product_id, cart_item.variant_id, cart_item.quantity):
        raise rejected(shopper.cart, "Item could not be added to cart")
    return cart_response(shopper)

@router.put("/items/{product_id}/{variant_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: str,
    variant_id: str,
    cart_update: CartItemUpdate,
    shopper: ShopperSession = Depends(get_shopper),
):
    """Update cart item quantity; zero or less removes the item"""
    if cart_update.quantity > 0 and shopper.cart.find(product_id, variant_id) is None:
        raise HTTPException(status_code=404, detail="Cart item not found")
    if not await shopper.cart.update_quantity(product_id, variant_id, cart_update.quantity):
        raise rejected(shopper.cart, "Item quantity could not be updated")
    return cart_response(shopper)

@router.delete("/items/{product_id}/{variant_id}", response_model=CartResponse)
async def remove_from_cart(product_id: str, variant_id: str, shopper: ShopperSession = Depends(get_shopper)):
    """Remove item from cart"""
    if not await shopper.cart.remove(product_id, variant_id):
        raise rejected(shopper.cart, "Item could not be removed from cart")
    return cart_response(shopper)

@router.delete("/", response_model=CartResponse)
async def clear_cart(shopper: ShopperSession = Depends(get_shopper)):
    """Clear entire cart"""
    if not await shopper.cart.clear():
        raise rejected(shopper.cart, "Cart could not be cleared")
    return cart_response(shopper)

@router.post("/validate", response_model=CartValidationResponse)
async def validate_cart(shopper: ShopperSession = Depends(get_shopper)):
    """Strictly revalidate the cart before checkout"""
    result = await shopper.cart.validate_for_checkout()
    return CartValidationResponse(valid=result.valid, invalid_items=result.invalid_items, cart=cart_response(shopper))

@router.post("/sync")
async def sync_cart(shopper: ShopperSession = Depends(get_shopper)):
    """Push the cart to the account now instead of waiting for the next periodic sync"""
    if not shopper.context.is_authenticated:
        raise HTTPException(status_code=401, detail="Login required to sync cart")
    synced = await shopper.cart.sync_to_remote()
    result = shopper.cart.last_sync_result
    return {
        "synced": synced,
        "failures": [
            {"operation": f.operation, "key": list(f.key), "error": f.error}
            for f in (result.failures if result else [])
        ],
    }
