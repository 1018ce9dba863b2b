"""Signed-request authentication for API callers."""

import hashlib
import time

from fastapi import Depends, HTTPException, Header, Request
from stellar_sdk import Keypair
from stellar_sdk.exceptions import BadSignatureError, Ed25519PublicKeyInvalidError

from marginledger.api.dependencies import get_settings
from marginledger.config import Settings

# Signature validity window (5 minutes)
SIGNATURE_VALIDITY_SECONDS = 300


def verify_stellar_signature(
    public_key: str,
    message: bytes,
    signature: str,
) -> bool:
    """
    Verify a Stellar signature.

    Args:
        public_key: Stellar public key (G...)
        message: Message bytes that were signed
        signature: Hex-encoded signature

    Returns:
        True if signature is valid
    """
    try:
        keypair = Keypair.from_public_key(public_key)
        keypair.verify(message, bytes.fromhex(signature))
        return True
    except (BadSignatureError, Ed25519PublicKeyInvalidError, ValueError):
        return False


def create_sign_message(
    method: str,
    path: str,
    body: bytes,
    timestamp: int,
) -> bytes:
    """
    Create the message to be signed for API authentication.

    Format: METHOD|PATH|SHA256(BODY)|TIMESTAMP
    """
    body_hash = hashlib.sha256(body).hexdigest()
    message = f"{method}|{path}|{body_hash}|{timestamp}"
    return message.encode("utf-8")


async def verify_request_signature(
    request: Request,
    x_stellar_address: str = Header(...),
    x_stellar_signature: str = Header(...),
    x_timestamp: str = Header(...),
) -> str:
    """
    FastAPI dependency to verify request signature.

    Required headers:
    - X-Stellar-Address: Caller's Stellar public key
    - X-Stellar-Signature: Hex-encoded signature
    - X-Timestamp: Unix timestamp of signature

    Returns:
        Verified caller address

    Raises:
        HTTPException 401 if verification fails
    """
    try:
        timestamp = int(x_timestamp)
    except ValueError:
        raise HTTPException(
            status_code=401,
            detail="Invalid timestamp format",
        )

    current_time = int(time.time())
    if abs(current_time - timestamp) > SIGNATURE_VALIDITY_SECONDS:
        raise HTTPException(
            status_code=401,
            detail="Timestamp expired or too far in future",
        )

    body = await request.body()

    message = create_sign_message(
        method=request.method,
        path=request.url.path,
        body=body,
        timestamp=timestamp,
    )

    if not verify_stellar_signature(x_stellar_address, message, x_stellar_signature):
        raise HTTPException(
            status_code=401,
            detail="Invalid signature",
        )

    return x_stellar_address


async def require_admin(
    caller: str = Depends(verify_request_signature),
    settings: Settings = Depends(get_settings),
) -> str:
    """FastAPI dependency allowing only configured admin addresses."""
    if caller not in settings.admin_addresses:
        raise HTTPException(
            status_code=403,
            detail="Admin access required",
        )
    return caller
