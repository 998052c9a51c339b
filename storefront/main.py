import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from storefront.core.config import settings
from storefront.db.session import create_db_and_tables, engine
from storefront.services.content_store import get_content_store
from storefront.services.sessions import SessionRegistry, file_storage_factory

# Import models to ensure they are registered with SQLModel metadata
from storefront.models import User, UserCart, UserFavorite

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    app.state.content_store = get_content_store()
    app.state.registry = SessionRegistry(
        engine,
        app.state.content_store,
        file_storage_factory(settings.DEVICE_STORAGE_DIR),
    )
    app.state.registry.start_sweeper()
    yield
    # Stop periodic syncs before the process goes away
    await app.state.registry.close_all()

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
    description="Storefront API: catalog, cart, favorites and checkout",
)

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}. Visit /docs for Swagger UI."}

from storefront.routers import auth, products, cart, favorites, checkout

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(products.router, prefix="/api/v1/products", tags=["products"])
app.include_router(cart.router, prefix="/api/v1/cart", tags=["cart"])
app.include_router(favorites.router, prefix="/api/v1/favorites", tags=["favorites"])
app.include_router(checkout.router, prefix="/api/v1/checkout", tags=["checkout"])

# Add CORS
from fastapi.middleware.cors import CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
