"""
API key check shared by every /api route of the habit engine.
"""
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader
import os
import secrets

API_KEY_HEADER = "X-API-Key"

# Override with HABIT_ENGINE_API_KEY outside local development
API_KEY = os.getenv("HABIT_ENGINE_API_KEY", "habit-engine-dev-key")

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Reject habit engine requests without the configured key"""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {API_KEY_HEADER} header"
        )
    if not secrets.compare_digest(api_key.encode(), API_KEY.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown habit engine API key"
        )
    return api_key
