"""Request signing for the marketplace API.

Every marketplace call carries ``partner_id``, ``timestamp`` and ``sign`` query
parameters. ``sign`` is the hex HMAC-SHA256 of a base string whose composition
depends on the call class; the partner key is the MAC key and never appears in
the base string.
"""

import hashlib
import hmac
from dataclasses import dataclass
from enum import Enum

from order_sync_service.errors import ConfigurationError, SignatureError


class CallClass(str, Enum):
    """How the base string is composed for a request."""

    PUBLIC = "public"  # partner_id + path + timestamp
    AUTH = "auth"  # partner_id + path + timestamp + code/refresh_token
    SHOP = "shop"  # partner_id + path + timestamp + access_token + shop_id


@dataclass(frozen=True)
class RequestContext:
    """Fully resolved attributes of one request to be signed."""

    path: str
    partner_id: int
    timestamp: int
    call_class: CallClass = CallClass.SHOP
    credential: str | None = None
    access_token: str | None = None
    shop_id: int | None = None

    @classmethod
    def for_auth(
        cls, path: str, partner_id: int, timestamp: int, credential: str
    ) -> "RequestContext":
        return cls(path, partner_id, timestamp, CallClass.AUTH, credential=credential)

    @classmethod
    def for_shop(
        cls,
        path: str,
        partner_id: int,
        timestamp: int,
        access_token: str,
        shop_id: int,
    ) -> "RequestContext":
        return cls(
            path,
            partner_id,
            timestamp,
            CallClass.SHOP,
            access_token=access_token,
            shop_id=shop_id,
        )


class SignatureEngine:
    """Computes request signatures. Pure and stateless apart from the key."""

    def __init__(self, partner_key: str):
        if not isinstance(partner_key, str) or not partner_key:
            raise ConfigurationError("Marketplace partner key must be a non-empty string")
        self._key = partner_key.encode("utf-8")

    @staticmethod
    def base_string(context: RequestContext) -> str:
        """Build the canonical base string for a request context."""
        if not context.path or not context.path.startswith("/"):
            raise SignatureError(f"Invalid API path: {context.path!r}")
        if context.timestamp <= 0:
            raise SignatureError("Timestamp must be positive Unix seconds")

        prefix = f"{context.partner_id}{context.path}{context.timestamp}"

        if context.call_class is CallClass.PUBLIC:
            return prefix
        if context.call_class is CallClass.AUTH:
            if not context.credential:
                raise SignatureError("Auth-class signature requires a code or refresh token")
            return f"{prefix}{context.credential}"
        if not context.access_token or context.shop_id is None:
            raise SignatureError("Shop-scoped signature requires access_token and shop_id")
        return f"{prefix}{context.access_token}{context.shop_id}"

    def sign(self, context: RequestContext) -> str:
        """Return the lowercase hex HMAC-SHA256 signature for ``context``."""
        message = self.base_string(context).encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()
