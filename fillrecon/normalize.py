"""Turn raw venue payloads into canonical engine events.

Nothing in this module raises on bad input: unknown shapes come back as
``Unrecognized`` and bad numbers come back as zero.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Mapping, Optional, Union

from fillrecon.events import (
    STATUS_FILLED,
    STATUS_NEW,
    STATUS_PARTIALLY_FILLED,
    OrderFillEvent,
    PositionSnapshot,
    Side,
    Unrecognized,
)

NormalizedEvent = Union[OrderFillEvent, PositionSnapshot, Unrecognized]

_log = logging.getLogger("normalize")

_STATUS_KEYS = ("orderStatus", "order_status", "status")
_CONTROL_OPS = {"auth", "subscribe", "unsubscribe", "ping", "pong"}
_STATUSES = {
    "new": STATUS_NEW,
    "partiallyfilled": STATUS_PARTIALLY_FILLED,
    "partially_filled": STATUS_PARTIALLY_FILLED,
    "filled": STATUS_FILLED,
}
_TRUE_STRINGS = {"true", "1", "yes", "y"}


def to_number(value: Any) -> float:
    """Convert a venue number (string or numeric) to float, mapping anything invalid to 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return to_number(value) != 0


def to_side(value: Any) -> Side:
    side = str(value or "").strip().lower()
    if side == "buy":
        return "Buy"
    if side == "sell":
        return "Sell"
    return ""


def to_status(value: Any) -> str:
    raw = str(value or "").strip()
    return _STATUSES.get(raw.lower(), raw)


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _text(payload: Mapping[str, Any], *keys: str) -> str:
    value = _pick(payload, *keys)
    return "" if value is None else str(value)


def _detect_kind(payload: Mapping[str, Any], topic: Optional[str]) -> Optional[str]:
    hint = (topic or "").strip().lower()
    if hint.startswith("order"):
        return "order"
    if hint.startswith("position"):
        return "position"
    if any(key in payload for key in _STATUS_KEYS):
        return "order"
    if "size" in payload:
        return "position"
    return None


def _order_event(payload: Mapping[str, Any]) -> OrderFillEvent:
    return OrderFillEvent(
        order_id=_text(payload, "orderId", "order_id"),
        symbol=_text(payload, "symbol"),
        side=to_side(_pick(payload, "side")),
        status=to_status(_pick(payload, *_STATUS_KEYS)),
        qty=to_number(_pick(payload, "qty")),
        cum_exec_qty=to_number(_pick(payload, "cumExecQty", "cum_exec_qty")),
        cum_exec_value=to_number(_pick(payload, "cumExecValue", "cum_exec_value")),
        avg_price=to_number(_pick(payload, "avgPrice", "avg_price")),
        price=to_number(_pick(payload, "price")),
        cum_exec_fee=to_number(_pick(payload, "cumExecFee", "cum_exec_fee")),
        closed_pnl=to_number(_pick(payload, "closedPnl", "closed_pnl")),
        reduce_only=to_bool(_pick(payload, "reduceOnly", "reduce_only")),
        created_time=int(to_number(_pick(payload, "createdTime", "created_time"))),
        updated_time=int(to_number(_pick(payload, "updatedTime", "updated_time"))),
    )


def _position_snapshot(payload: Mapping[str, Any]) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=_text(payload, "symbol"),
        side=to_side(_pick(payload, "side")),
        size=to_number(_pick(payload, "size")),
        avg_price=to_number(_pick(payload, "avgPrice", "avg_price", "entryPrice")),
        mark_price=to_number(_pick(payload, "markPrice", "mark_price")),
        unrealised_pnl=to_number(_pick(payload, "unrealisedPnl", "unrealised_pnl")),
    )


def normalize_event(payload: Any, topic: Optional[str] = None) -> NormalizedEvent:
    """Normalize one decoded payload into an order update, position snapshot or ``Unrecognized``."""
    if not isinstance(payload, Mapping):
        return Unrecognized(reason="not_an_object", payload=payload)
    kind = _detect_kind(payload, topic)
    if kind == "order":
        return _order_event(payload)
    if kind == "position":
        return _position_snapshot(payload)
    return Unrecognized(reason="unknown_type", payload=payload)


def normalize_message(message: Any) -> List[NormalizedEvent]:
    """Unwrap a transport message (topic envelope, control frame or bare payload).

    Control frames produce no events. A JSON text is decoded first.
    """
    if isinstance(message, (bytes, bytearray)):
        message = message.decode("utf-8", errors="replace")
    if isinstance(message, str):
        try:
            message = json.loads(message)
        except ValueError:
            return [Unrecognized(reason="invalid_json", payload=message)]

    if not isinstance(message, Mapping):
        return [normalize_event(message)]

    if "topic" not in message and str(message.get("op", "")).lower() in _CONTROL_OPS:
        _log.debug("control_frame", extra={"op": message.get("op")})
        return []

    if "topic" in message:
        topic = str(message.get("topic") or "")
        data = message.get("data")
        if isinstance(data, Mapping):
            return [normalize_event(data, topic)]
        if isinstance(data, list):
            return [normalize_event(item, topic) for item in data]
        return [Unrecognized(reason="bad_envelope", payload=message)]

    return [normalize_event(message)]
