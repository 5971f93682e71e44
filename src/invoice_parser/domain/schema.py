"""Target shapes for structured extraction.

The field tuples here are the single source for both the prompt template and
the shape applied to parsed model output.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

INVOICE_FIELDS: Tuple[str, ...] = (
    "invoice_number",
    "invoice_date",
    "vendor_name",
    "vendor_gst",
    "customer_name",
    "customer_gst",
    "subtotal",
    "gst_amount",
    "total_amount",
)
LINE_ITEMS_KEY = "line_items"
LINE_ITEM_FIELDS: Tuple[str, ...] = ("description", "quantity", "unit_price", "amount")

LABEL_TYPES: Tuple[str, ...] = ("label", "device")
LABEL_KEY_FIELDS: Tuple[str, ...] = ("model", "serial", "power_rating", "manufacturer")

# Top-level keys of the broad invoice shape the legacy vision call returns.
LEGACY_INVOICE_KEYS: Tuple[str, ...] = ("items", "seller", "buyer", "total", "tax", "due_date", "currency")


def invoice_template() -> Dict[str, Any]:
    """Return the blank invoice object used in the prompt."""
    template: Dict[str, Any] = {name: "" for name in INVOICE_FIELDS}
    template[LINE_ITEMS_KEY] = [{name: "" for name in LINE_ITEM_FIELDS}]
    return template


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _conform_line_items(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    items: List[Dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        item = dict(entry)
        for name in LINE_ITEM_FIELDS:
            item.setdefault(name, "")
        # The template row echoed back untouched carries no data.
        if all(_is_blank(item[name]) for name in LINE_ITEM_FIELDS):
            continue
        items.append(item)
    return items


def conform_invoice(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Fill absent invoice keys with "" without touching present values."""
    result = dict(payload)
    for name in INVOICE_FIELDS:
        if result.get(name) is None:
            result[name] = ""
    result[LINE_ITEMS_KEY] = _conform_line_items(result.get(LINE_ITEMS_KEY))
    return result


def is_label_payload(payload: Dict[str, Any]) -> bool:
    return payload.get("type") in LABEL_TYPES


def conform_label(payload: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(payload)
    if result.get("text") is None:
        result["text"] = ""
    key_fields = result.get("key_fields")
    key_fields = dict(key_fields) if isinstance(key_fields, dict) else {}
    for name in LABEL_KEY_FIELDS:
        if key_fields.get(name) is None:
            key_fields[name] = ""
    result["key_fields"] = key_fields
    return result


def carries_schema_keys(payload: Dict[str, Any], extra_keys: Tuple[str, ...] = ()) -> bool:
    """True when ``payload`` looks like an extraction result rather than a bare envelope."""
    if is_label_payload(payload):
        return True
    return any(key in payload for key in INVOICE_FIELDS + (LINE_ITEMS_KEY,) + tuple(extra_keys))
