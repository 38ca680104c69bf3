import asyncio
from datetime import datetime
from typing import Optional, Generic, TypeVar, Any, Awaitable
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    DATABASE_NAME: str = "buylocal"
    # Tokens are issued by the external auth provider, we only verify them
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0
    LOCAL_CART_DIR: str = ".carts"
    # In-process bookkeeping per owner is least-recently-used bounded
    CART_VIEW_CACHE_SIZE: int = 256
    CART_SESSION_CACHE_SIZE: int = 10000
    PUSH_FUNCTION_URL: Optional[str] = None
    PUSH_FUNCTION_KEY: Optional[str] = None
    PUBLIC_APP_URL: str = ""

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Authentication ---
def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")
    if not payload.get("sub"):
        raise UnauthorizedException("Token has no subject")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: Any = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class PersistenceTimeout(AppException):
    """An external call did not answer within its ceiling. Never retried for the caller."""

    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"{operation} timed out after {seconds:g}s, please try again"
        )

# --- Timeouts ---
async def with_timeout(awaitable: Awaitable[T], operation: str, seconds: Optional[float] = None) -> T:
    """
    Await an external call with a fixed ceiling.

    An unresponsive backend surfaces as PersistenceTimeout instead of an
    indefinite hang.
    """
    limit = settings.EXTERNAL_CALL_TIMEOUT_SECONDS if seconds is None else seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError:
        raise PersistenceTimeout(operation, limit)
