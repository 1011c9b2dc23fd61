"""x-api-key authentication for the scamscope API.

``API_KEY`` may hold several comma-separated keys so a key can be rotated
without downtime. Keys are read per request.
"""

import logging
import os
import secrets
from typing import List

from dotenv import load_dotenv
from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY_NAME = "x-api-key"
DEV_API_KEY = "scamscope-dev-key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def accepted_api_keys() -> List[str]:
    raw = os.getenv("API_KEY", DEV_API_KEY)
    return [k.strip() for k in raw.split(",") if k.strip()]


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Reject a missing or unknown key with 401."""
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Please provide the '{API_KEY_NAME}' header.",
        )

    if not any(secrets.compare_digest(api_key, k) for k in accepted_api_keys()):
        logger.warning(f"Rejected API key ending in ...{api_key[-4:]}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )

    return api_key
