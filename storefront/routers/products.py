from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from storefront.services.content_store import ContentStoreClient

router = APIRouter()

def get_catalog(request: Request) -> ContentStoreClient:
    return request.app.state.content_store

@router.get("/", response_model=List[Dict[str, Any]])
async def read_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(24, ge=1, le=100),
    catalog: ContentStoreClient = Depends(get_catalog),
):
    start = (page - 1) * page_size
    return await catalog.list_products(start=start, end=start + page_size, category_id=category, search=q)

@router.get("/featured", response_model=List[Dict[str, Any]])
async def read_featured_products(catalog: ContentStoreClient = Depends(get_catalog)):
    return await catalog.featured_products()

@router.get("/categories", response_model=List[Dict[str, Any]])
async def read_categories(catalog: ContentStoreClient = Depends(get_catalog)):
    return await catalog.categories()

@router.get("/{product_id}", response_model=Dict[str, Any])
async def read_product(product_id: str, catalog: ContentStoreClient = Depends(get_catalog)):
    product = await catalog.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
