from __future__ import annotations

from typing import Any, Dict, Optional

from flask import request, session

from ledger.errors import ValidationError


def payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def actor_from(data: Dict[str, Any]) -> Optional[str]:
    # Body wins; otherwise whoever is logged in
    return (data.get("actor") or session.get("username") or "").strip() or None


def int_field(data: Dict[str, Any], name: str, required: bool = True) -> Optional[int]:
    value = data.get(name)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{name} is required", field=name)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", field=name, value=value)


def id_list(data: Dict[str, Any], name: str):
    values = data.get(name)
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{name} must be a non-empty list", field=name)
    return [int_field({name: v}, name) for v in values]


def money_dict(result: Dict[str, Any]) -> Dict[str, Any]:
    """Stringify Decimals and dates in a simulation result."""
    def _conv(value):
        if isinstance(value, dict):
            return {k: _conv(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_conv(v) for v in value]
        if hasattr(value, "isoformat"):
            return value.isoformat()
        if value is not None and not isinstance(value, (int, bool, str, float)):
            return str(value)
        return value
    return _conv(result)
