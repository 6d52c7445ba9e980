from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from ..errors import ValidationError
from ..extensions import db
from ..models import Setting
from ..decimal_utils import to_decimal

TYPE_STRING = "string"
TYPE_NUMBER = "number"
TYPE_BOOLEAN = "boolean"
TYPE_JSON = "json"
VALUE_TYPES = {TYPE_STRING, TYPE_NUMBER, TYPE_BOOLEAN, TYPE_JSON}

KEY_TAX_ENABLED = "tax_enabled"
KEY_TAX_RATE = "tax_rate"

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _decode(setting: Setting) -> Any:
    raw = setting.value
    if raw is None:
        return None
    if setting.value_type == TYPE_NUMBER:
        return to_decimal(raw)
    if setting.value_type == TYPE_BOOLEAN:
        return raw.strip().lower() in _TRUE_STRINGS
    if setting.value_type == TYPE_JSON:
        return json.loads(raw)
    return raw


def _encode(value: Any, value_type: str) -> str | None:
    if value is None:
        return None
    if value_type == TYPE_NUMBER:
        try:
            return str(to_decimal(value))
        except ValueError:
            raise ValidationError(f"Setting value is not a number: {value!r}")
    if value_type == TYPE_BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        text_value = str(value).strip().lower()
        if text_value in _TRUE_STRINGS:
            return "true"
        if text_value in _FALSE_STRINGS:
            return "false"
        raise ValidationError(f"Setting value is not a boolean: {value!r}")
    if value_type == TYPE_JSON:
        return json.dumps(value)
    return str(value)


def _infer_type(value: Any) -> str:
    if isinstance(value, bool):
        return TYPE_BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return TYPE_NUMBER
    if isinstance(value, (dict, list)):
        return TYPE_JSON
    return TYPE_STRING


def get_setting(tenant_id: int, key: str, default: Any = None) -> Any:
    """Typed value of a tenant setting, or `default` when the key is not set."""
    setting = db.session.query(Setting).filter_by(tenant_id=tenant_id, key=key).first()
    if setting is None:
        return default
    value = _decode(setting)
    return default if value is None else value


def set_setting(
    tenant_id: int,
    key: str,
    value: Any,
    value_type: str | None = None,
    description: str | None = None,
    commit: bool = True,
) -> Setting:
    if not key or not key.strip():
        raise ValidationError("Setting key is required")
    value_type = value_type or _infer_type(value)
    if value_type not in VALUE_TYPES:
        raise ValidationError(f"Unknown setting type: {value_type}")

    setting = db.session.query(Setting).filter_by(tenant_id=tenant_id, key=key).first()
    if setting is None:
        setting = Setting(tenant_id=tenant_id, key=key)
        db.session.add(setting)
    setting.value = _encode(value, value_type)
    setting.value_type = value_type
    if description is not None:
        setting.description = description

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return setting


def list_settings(tenant_id: int) -> list[Setting]:
    return db.session.query(Setting).filter_by(tenant_id=tenant_id).order_by(Setting.key.asc()).all()
