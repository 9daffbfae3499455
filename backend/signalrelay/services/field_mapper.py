"""
Field Mapper.

Extracts canonical signal fields from an arbitrary inbound body using a
per-credential mapping of canonical field -> source path plus default values.

Pure functions only: no database, no HTTP. The API layer parses the body with
``parse_body`` and hands the resulting tree to ``map_fields``.
"""
import json
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl

from signalrelay.core.errors import ValidationError

logger = logging.getLogger(__name__)

# Wire names of the canonical fields, as used in payload mappings and defaults.
CANONICAL_FIELDS = ("signal", "symbol", "price", "time", "interval", "alertId")
REQUIRED_FIELDS = ("signal", "symbol", "price")
# Column widths of the signals table
FIELD_MAX_LENGTHS = {"symbol": 40, "interval": 20, "alertId": 200}

DIRECTIONS = ("BUY", "SELL", "LONG", "SHORT", "CLOSE")
DIRECTION_ALIASES = {"EXIT": "CLOSE", "FLAT": "CLOSE"}
ENTRY_DIRECTIONS = frozenset({"BUY", "LONG"})
EXIT_DIRECTIONS = frozenset({"SELL", "SHORT"})

_MISSING = object()


@dataclass
class MappedSignal:
    """Canonical field set produced by the mapper."""
    direction: str
    symbol: str
    price: float
    time: datetime
    interval: Optional[str] = None
    external_id: Optional[str] = None

    def processed(self) -> Dict[str, Any]:
        """Echo of the normalized values returned to API callers."""
        return {
            "signal": self.direction,
            "symbol": self.symbol,
            "price": self.price,
            "time": self.time.isoformat(),
            "interval": self.interval,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["time"] = self.time.isoformat()
        return data


# ---------- Body parsing ----------

def parse_body(content_type: str, raw: bytes) -> Dict[str, Any]:
    """
    Parse a request body into a tree of dicts/lists/scalars.

    Accepts JSON, form-encoded bodies, and JSON sent as text/plain
    (some alerting tools do not set the content type).
    """
    content_type = (content_type or "").lower()
    text = raw.decode("utf-8", errors="replace") if raw else ""

    if "application/json" in content_type or "text/plain" in content_type:
        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError:
            raise ValidationError("Invalid payload format", "Body is not valid JSON")
    elif "application/x-www-form-urlencoded" in content_type:
        data = dict(parse_qsl(text, keep_blank_values=True))
    else:
        raise ValidationError(
            "Unsupported content type",
            "Use application/json, application/x-www-form-urlencoded, or text/plain",
        )

    if not isinstance(data, dict):
        raise ValidationError("Invalid payload format", "Body must be a JSON object")
    return data


# ---------- Path resolution ----------

def resolve_path(tree: Any, path: str) -> Any:
    """
    Resolve a dot-separated path against a parsed body.

    A literal top-level key wins over walking (``"data.ticker"`` as a key).
    Numeric segments index into lists. Returns ``_MISSING`` when any segment
    cannot be resolved.
    """
    if not path:
        return _MISSING
    if isinstance(tree, Mapping) and path in tree:
        return tree[path]

    node = tree
    for segment in path.split("."):
        if isinstance(node, Mapping):
            if segment not in node:
                return _MISSING
            node = node[segment]
        elif isinstance(node, list) and segment.isdigit():
            index = int(segment)
            if index >= len(node):
                return _MISSING
            node = node[index]
        else:
            return _MISSING
    return node


def _present(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _lookup(body: Mapping[str, Any], field: str, mapping: Mapping[str, str],
            defaults: Mapping[str, Any]) -> Any:
    value = resolve_path(body, mapping.get(field) or field)
    if _present(value):
        return value
    default = defaults.get(field)
    if _present(default):
        return default
    return _MISSING


# ---------- Value coercion ----------

def parse_price(value: Any) -> Optional[float]:
    """Parse a price; returns None for anything that is not a finite number."""
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        try:
            price = float(str(value).strip().replace(",", ""))
        except ValueError:
            return None
    if math.isnan(price) or math.isinf(price):
        return None
    return price


def parse_time(value: Any, received_at: datetime) -> datetime:
    """
    Parse caller-supplied time to naive UTC.

    Accepts ISO-8601 strings and epoch seconds or milliseconds. Anything
    unparseable falls back to the receipt time.
    """
    if value is _MISSING or value is None:
        return received_at

    parsed: Optional[datetime] = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = _from_epoch(float(value))
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = _from_epoch(float(text))
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                parsed = None

    if parsed is None:
        logger.warning(f"Unparseable signal time {value!r}, using receipt time")
        return received_at
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _from_epoch(seconds: float) -> Optional[datetime]:
    if seconds > 1e12:  # milliseconds
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def normalize_direction(value: str) -> str:
    """Uppercase a direction and map aliases; rejects unknown directions."""
    direction = str(value).strip().upper()
    direction = DIRECTION_ALIASES.get(direction, direction)
    if direction not in DIRECTIONS:
        raise ValidationError(
            "Invalid signal direction",
            f"Unsupported signal '{value}'",
            allowed=list(DIRECTIONS),
        )
    return direction


def direction_class(direction: str) -> Optional[str]:
    """Return "entry", "exit", or None for directions exempt from dedup."""
    if direction in ENTRY_DIRECTIONS:
        return "entry"
    if direction in EXIT_DIRECTIONS:
        return "exit"
    return None


# ---------- Mapping ----------

def map_fields(
    body: Mapping[str, Any],
    mapping: Optional[Mapping[str, str]] = None,
    defaults: Optional[Mapping[str, Any]] = None,
    received_at: Optional[datetime] = None,
) -> MappedSignal:
    """
    Resolve the canonical field set from ``body``.

    Raises ValidationError listing every required field that could not be
    resolved, together with the mapping in effect.
    """
    mapping = mapping or {}
    defaults = defaults or {}
    _check_mapping(mapping, defaults)
    received_at = received_at or datetime.now(timezone.utc).replace(tzinfo=None)

    raw = {field: _lookup(body, field, mapping, defaults) for field in CANONICAL_FIELDS}
    price = parse_price(raw["price"])

    missing = []
    if not _present(raw["signal"]):
        missing.append("signal")
    if not _present(raw["symbol"]):
        missing.append("symbol")
    if price is None:
        missing.append("price")

    if missing:
        raise ValidationError(
            "Missing required fields",
            f"Could not extract: {', '.join(missing)}. Check your payload_mapping configuration.",
            missing=missing,
            received_payload=dict(body),
            current_mapping=dict(mapping),
        )

    symbol = str(raw["symbol"]).strip().upper()
    interval = str(raw["interval"]) if _present(raw["interval"]) else None
    external_id = str(raw["alertId"]) if _present(raw["alertId"]) else None
    _check_length("symbol", symbol)
    _check_length("interval", interval)
    _check_length("alertId", external_id)

    return MappedSignal(
        direction=normalize_direction(raw["signal"]),
        symbol=symbol,
        price=price,
        time=parse_time(raw["time"], received_at),
        interval=interval,
        external_id=external_id,
    )


def _check_mapping(mapping: Any, defaults: Any) -> None:
    """Stored mappings are caller-edited JSON; reject shapes the resolver cannot walk."""
    if not isinstance(mapping, Mapping) or not all(
        isinstance(field, str) and isinstance(path, str) for field, path in mapping.items()
    ):
        raise ValidationError(
            "Invalid payload mapping",
            "payload_mapping must be an object of field names to string paths",
            current_mapping=mapping,
        )
    if not isinstance(defaults, Mapping):
        raise ValidationError(
            "Invalid default values",
            "default_values must be an object of field names to values",
            current_defaults=defaults,
        )


def _check_length(field: str, value: Optional[str]) -> None:
    limit = FIELD_MAX_LENGTHS[field]
    if value is not None and len(value) > limit:
        raise ValidationError(
            "Field too long",
            f"{field} must be at most {limit} characters",
            field=field,
            max_length=limit,
        )
