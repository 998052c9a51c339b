from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from typing import Optional
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlmodel import Session, select
from jose import JWTError, jwt
from pydantic import BaseModel

from storefront.db.session import get_session
from storefront.models.user import User
from storefront.core.config import settings
from storefront.services.auth import AuthService
from storefront.services.sessions import DEVICE_ID_PATTERN, SessionRegistry, ShopperSession

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token")
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token", auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str

class UserCreate(BaseModel):
    email: str
    password: str
    name: Optional[str] = None

class UserRead(BaseModel):
    id: int
    email: str
    name: Optional[str] = None

def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)

async def get_current_user(token: str = Depends(oauth2_scheme), session: Session = Depends(get_session)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = session.exec(select(User).where(User.email == username)).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user

async def get_current_user_optional(token: str = Depends(oauth2_scheme_optional), session: Session = Depends(get_session)) -> Optional[User]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            return None
    except JWTError:
        return None

    user = session.exec(select(User).where(User.email == username)).first()
    return user if user and user.is_active else None

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry

def get_device_id(x_device_id: Optional[str] = Header(None, alias="X-Device-Id")) -> str:
    if not x_device_id or not DEVICE_ID_PATTERN.match(x_device_id):
        raise HTTPException(status_code=400, detail="Missing or invalid X-Device-Id header")
    return x_device_id

async def get_shopper(
    device_id: str = Depends(get_device_id),
    current_user: Optional[User] = Depends(get_current_user_optional),
    registry: SessionRegistry = Depends(get_registry),
) -> ShopperSession:
    """The calling device's cart/favorites session, aligned with the caller's login state."""
    return await registry.get(device_id, current_user.id if current_user else None)


@router.post("/register", response_model=UserRead)
def register(user_in: UserCreate, service: AuthService = Depends(get_auth_service)):
    return service.register_user(user_in.email, user_in.password, name=user_in.name)

@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    x_device_id: Optional[str] = Header(None, alias="X-Device-Id"),
    service: AuthService = Depends(get_auth_service),
    registry: SessionRegistry = Depends(get_registry),
):
    user, error_message = service.authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Merge the device's guest cart and favorites into the account
    if x_device_id:
        device_id = get_device_id(x_device_id)
        await registry.get(device_id, user.id)

    access_token = service.create_access_token(data={"sub": user.email})
    return {"access_token": access_token, "token_type": "bearer"}

@router.post("/logout")
async def logout(
    device_id: str = Depends(get_device_id),
    current_user: User = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_registry),
):
    await registry.logout(device_id, current_user.id)
    return {"message": "Logged out"}

@router.get("/me", response_model=UserRead)
def read_user_me(current_user: User = Depends(get_current_user)):
    return current_user
