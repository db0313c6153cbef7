"""Client identification utilities."""
import re
from typing import Optional
from fastapi import Header, HTTPException
import logging

logger = logging.getLogger(__name__)

CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


def validate_client_id(client_id: Optional[str]) -> str:
    """
    Validate a client id.

    Args:
        client_id: Raw client id

    Returns:
        Valid client id

    Raises:
        ValueError: If the id is missing or malformed
    """
    if not client_id:
        raise ValueError("Missing client id")
    if not CLIENT_ID_PATTERN.match(client_id):
        raise ValueError("Invalid client id")
    return client_id


def verify_client_id(x_client_id: Optional[str] = Header(None)) -> str:
    """
    Verify the X-Client-Id header naming the calling browser or device.

    Raises:
        HTTPException: If the header is missing or malformed
    """
    try:
        return validate_client_id(x_client_id)
    except ValueError as e:
        logger.warning("Client identification failed", extra={
            "client_id_prefix": x_client_id[:8] + "..." if x_client_id and len(x_client_id) > 8 else x_client_id,
            "reason": str(e)
        })
        raise HTTPException(status_code=400, detail=str(e))
