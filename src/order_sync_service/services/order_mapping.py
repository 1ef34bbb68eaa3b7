"""Pure mapping from a raw marketplace order payload to the normalized schema.

``normalize_order`` has no I/O and no clock: the same payload always yields the
same record, which is what makes re-normalization idempotent.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from order_sync_service.errors import OrderMappingError
from order_sync_service.infrastructure.database.models import OrderStatus

ZERO = Decimal("0")

RECIPIENT_FIELDS = {
    "recipient_name": "name",
    "recipient_phone": "phone",
    "recipient_full_address": "full_address",
    "recipient_city": "city",
    "recipient_state": "state",
    "recipient_district": "district",
    "recipient_zipcode": "zipcode",
}


def to_decimal(value: Any) -> Decimal:
    """Parse a monetary value; anything non-numeric or non-finite becomes zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        # str() keeps 12.5 as 12.5 instead of its binary expansion
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return ZERO
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return ZERO
    else:
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def from_epoch(value: Any) -> datetime | None:
    """Unix seconds to an aware UTC datetime; absent or zero gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or value <= 0:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_status(value: Any) -> str:
    try:
        return OrderStatus(value).value
    except ValueError:
        return OrderStatus.UNKNOWN.value


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _sub_object(payload: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = payload.get(key)
    return value if isinstance(value, dict) else None


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def normalize_order(payload: Any, tenant_id: str, shop_id: int) -> dict[str, Any]:
    """Map one raw order detail to a normalized_orders record.

    Raises:
        OrderMappingError: the payload is not an object or has no order_sn.
    """
    if not isinstance(payload, dict):
        raise OrderMappingError(f"Raw payload must be an object, got {type(payload).__name__}")
    order_sn = payload.get("order_sn")
    if not order_sn or not isinstance(order_sn, str):
        raise OrderMappingError("Raw payload has no order_sn")

    total_amount = to_decimal(payload.get("total_amount"))
    shipping_fee = to_decimal(_first_present(payload, "shipping_fee", "actual_shipping_fee"))

    record: dict[str, Any] = {
        "order_id": order_sn,
        "tenant_id": tenant_id,
        "shop_id": shop_id,
        "status": to_status(payload.get("order_status")),
        "total_amount": total_amount,
        "shipping_fee": shipping_fee,
        "actual_shipping_fee": to_decimal(payload.get("actual_shipping_fee")),
        "estimated_shipping_fee": to_decimal(payload.get("estimated_shipping_fee")),
        "liquid_value": total_amount - shipping_fee,
        "currency": _text(payload.get("currency")),
        "created_at": from_epoch(payload.get("create_time")),
        "updated_at": from_epoch(payload.get("update_time")),
        "ship_by_date": from_epoch(payload.get("ship_by_date")),
        "buyer_username": _text(payload.get("buyer_username")),
        "shipping_carrier": _text(payload.get("shipping_carrier")),
    }

    # Payment sub-object: every field is null when the parent is missing
    payment = _sub_object(payload, "payment_info")
    record["payment_method"] = _text(payment.get("payment_method")) if payment else None
    record["paid_amount"] = to_decimal(payment.get("paid_amount")) if payment else None
    record["pay_time"] = from_epoch(payment.get("pay_time")) if payment else None

    address = _sub_object(payload, "recipient_address")
    for column, field in RECIPIENT_FIELDS.items():
        record[column] = _text(address.get(field)) if address else None
    record["recipient_country"] = (
        _text(_first_present(address, "country", "region")) if address else None
    )

    record["raw_order_id"] = order_sn
    return record
