from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator

from app.core.errors import InvalidPayload, NotFound
from app.core.extensions import db


@contextmanager
def unit_of_work() -> Iterator[Any]:
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def fetch(model, ident: int | None, label: str):
    if ident is None:
        raise NotFound(f"{label} not found")
    instance = db.session.get(model, ident)
    if instance is None:
        raise NotFound(f"{label} not found", id=ident)
    return instance


def parse_id(value: Any, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidPayload(f"Invalid identifier for {field_name}", field=field_name) from exc


def require_text(payload: dict[str, Any], key: str, max_length: int = 255) -> str:
    raw = payload.get(key)
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidPayload(f"Missing {key}", field=key)
    value = raw.strip()
    if len(value) > max_length:
        raise InvalidPayload(f"{key} is longer than {max_length} characters", field=key)
    return value


def optional_text(payload: dict[str, Any], key: str, max_length: int = 255) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise InvalidPayload(f"{key} must be text", field=key)
    value = raw.strip()
    if len(value) > max_length:
        raise InvalidPayload(f"{key} is longer than {max_length} characters", field=key)
    return value or None


def require_int(payload: dict[str, Any], key: str, minimum: int = 0) -> int:
    raw = payload.get(key)
    if isinstance(raw, bool) or raw is None:
        raise InvalidPayload(f"Missing {key}", field=key)
    if isinstance(raw, float) and not raw.is_integer():
        raise InvalidPayload(f"{key} must be an integer", field=key)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidPayload(f"{key} must be an integer", field=key) from exc
    if value < minimum:
        raise InvalidPayload(f"{key} must be at least {minimum}", field=key)
    return value


def parse_iso_date(value: Any, field_name: str) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    raw = (value or "").strip() if isinstance(value, str) else ""
    if not raw:
        raise InvalidPayload(f"Missing {field_name}", field=field_name)
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidPayload(f"Invalid date format for {field_name}", field=field_name) from exc


def parse_optional_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidPayload(f"Invalid date format for {field_name}", field=field_name) from exc
    else:
        raise InvalidPayload(f"Invalid date format for {field_name}", field=field_name)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
