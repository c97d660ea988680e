"""
Defensive field extraction shared by the feed mappers.

Store records are not uniform: ids arrive as ints or strings, prices as
numbers or "19,99 €", booleans as "yes"/1/True. These helpers normalize the
common shapes and raise ``RecordMappingError`` when a required value is
missing, which skips the record instead of failing the batch.
"""

from typing import Any, Iterable, Mapping, Optional

from catalog_feeds.feeds.errors import RecordMappingError

ID_FIELDS = ("id", "product_id", "item_id", "retailer_id", "sku")

_TRUE_STRINGS = {"true", "yes", "y", "1", "on"}
_FALSE_STRINGS = {"false", "no", "n", "0", "off", ""}


def first_present(record: Mapping[str, Any], fields: Iterable[str]) -> Any:
    """
    First non-empty value among ``fields``.

    Whitespace-only strings count as empty. Returns None if every field is
    missing or empty.
    """
    for field in fields:
        value = record.get(field)
        if value is None:
            continue
        if isinstance(value, str):
            if not value.strip():
                continue
            return value.strip()
        return value
    return None


def require_field(record: Mapping[str, Any], *fields: str) -> Any:
    """
    Like ``first_present`` but mandatory.

    Raises:
        RecordMappingError: If none of ``fields`` has a value
    """
    value = first_present(record, fields)
    if value is None:
        raise RecordMappingError(f"Missing required field: {' / '.join(fields)}")
    return value


def extract_id(record: Mapping[str, Any]) -> str:
    """
    Record identifier as a string, trying common id field names.

    Raises:
        RecordMappingError: If the record carries no identifier
    """
    return str(require_field(record, *ID_FIELDS))


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse a monetary amount.

    Handles numbers and strings with currency symbols, thousand separators
    and comma decimals ("1.234,50" is not supported, "1,234.50" and "12,5"
    are). Negative or unparsable amounts yield None.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        amount = float(value)
        return round(amount, 2) if amount >= 0 else None

    if isinstance(value, str):
        cleaned = value.strip()
        for symbol in ("$", "€", "£"):
            cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.strip()
        # Comma as decimal separator (European format)
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        cleaned = cleaned.replace(",", "")
        try:
            amount = float(cleaned)
        except ValueError:
            return None
        return round(amount, 2) if amount >= 0 else None

    return None


def format_price(value: Any, currency: str) -> Optional[str]:
    """
    Price in feed notation, e.g. ``"19.99 USD"``; None when unparsable.
    """
    amount = parse_amount(value)
    if amount is None:
        return None
    return f"{amount:.2f} {currency}"


def to_feed_bool(value: Any) -> Optional[bool]:
    """Coerce truthy/falsy record values; None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise RecordMappingError(f"Not a boolean value: {value!r}")


def extract_name(value: Any) -> Optional[str]:
    """
    Display name from a string, a ``{"name": ...}`` object or a list of
    either (first element wins).
    """
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        for nested_field in ("name", "title", "label", "slug"):
            nested_value = value.get(nested_field)
            if isinstance(nested_value, str) and nested_value.strip():
                return nested_value.strip()
        return None
    if isinstance(value, list) and value:
        return extract_name(value[0])
    return None
