# api/auth.py
import logging
import os
import secrets

from dotenv import load_dotenv
from fastapi import HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

load_dotenv()
API_KEY = os.getenv("API_KEY")
APIKEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=APIKEY_NAME, auto_error=False)

logger = logging.getLogger("api")


async def get_api_key(api_key_header: str = Security(api_key_header)):
    """
    Validate the admin API key from the request header.

    Args:
        api_key_header (str): Value of the X-API-Key header

    Returns:
        str: The validated API key

    Raises:
        HTTPException: 401 if the header is missing
        HTTPException: 403 if the key does not match API_KEY, or no API_KEY
            is configured on the server

    Note:
        Keys are compared in constant time.
    """
    if not api_key_header:
        raise HTTPException(status_code=401, detail="Missing API Key")
    if not API_KEY or not secrets.compare_digest(api_key_header, API_KEY):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=403, detail="Forbidden")
    return api_key_header
