# Overview: Request decorators for webhook routes.

import base64
import hashlib
import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

HMAC_HEADER = "X-Shopify-Hmac-Sha256"


def compute_shopify_hmac(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_shopify_hmac(secret: str | None, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_shopify_hmac(secret, body).encode("ascii")
    # Bytes on both sides: compare_digest rejects non-ASCII str arguments
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


def require_shopify_hmac(f):
    """
    Require a valid Shopify webhook signature.

    SECURITY: Returns 401 if:
    - SHOPIFY_WEBHOOK_SECRET is not configured
    - X-Shopify-Hmac-Sha256 header missing
    - signature does not match the raw request body
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("SHOPIFY_WEBHOOK_SECRET")
        body = request.get_data(cache=True)

        if not verify_shopify_hmac(secret, body, request.headers.get(HMAC_HEADER)):
            logger.warning(
                "Rejected webhook %s from shop %s: invalid signature",
                request.path,
                request.headers.get("X-Shopify-Shop-Domain"),
            )
            return jsonify({"error": "Invalid webhook signature"}), 401

        return f(*args, **kwargs)

    return decorated_function
