from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from storefront.routers.auth import get_shopper
from storefront.services.sessions import ShopperSession

router = APIRouter()

class FavoritesResponse(BaseModel):
    items: List[str]
    count: int
    authenticated: bool
    error: Optional[str] = None

def favorites_response(shopper: ShopperSession) -> FavoritesResponse:
    favorites = shopper.favorites
    return FavoritesResponse(
        items=favorites.items.value,
        count=favorites.count.value,
        authenticated=shopper.context.is_authenticated,
        error=favorites.error.value,
    )

@router.get("/", response_model=FavoritesResponse)
async def get_favorites(shopper: ShopperSession = Depends(get_shopper)):
    return favorites_response(shopper)

@router.post("/{product_id}", response_model=FavoritesResponse)
async def add_favorite(product_id: str, shopper: ShopperSession = Depends(get_shopper)):
    if not await shopper.favorites.add(product_id):
        raise HTTPException(status_code=409, detail=shopper.favorites.error.value or "Product could not be added to favorites")
    return favorites_response(shopper)

@router.delete("/{product_id}", response_model=FavoritesResponse)
async def remove_favorite(product_id: str, shopper: ShopperSession = Depends(get_shopper)):
    if not await shopper.favorites.remove(product_id):
        raise HTTPException(status_code=409, detail=shopper.favorites.error.value or "Product could not be removed from favorites")
    return favorites_response(shopper)

@router.post("/{product_id}/toggle", response_model=FavoritesResponse)
async def toggle_favorite(product_id: str, shopper: ShopperSession = Depends(get_shopper)):
    if not await shopper.favorites.toggle(product_id):
        raise HTTPException(status_code=409, detail=shopper.favorites.error.value or "Favorites could not be updated")
    return favorites_response(shopper)

@router.delete("/", response_model=FavoritesResponse)
async def clear_favorites(shopper: ShopperSession = Depends(get_shopper)):
    if not await shopper.favorites.clear():
        raise HTTPException(status_code=409, detail=shopper.favorites.error.value or "Favorites could not be cleared")
    return favorites_response(shopper)
