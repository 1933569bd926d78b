"""
Conversions de champs bruts (lignes Supabase, payloads JSON) vers des types Python.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser  # type: ignore


def pick(row: Mapping[str, Any], snake_key: str, camel_key: Optional[str] = None, default: Any = None) -> Any:
    """
    Lit une valeur en acceptant le nom de colonne (snake_case) ou le nom JSON (camelCase).
    """
    if snake_key in row and row[snake_key] is not None:
        return row[snake_key]
    if camel_key and camel_key in row and row[camel_key] is not None:
        return row[camel_key]
    return default


def to_date(value: Any) -> Optional[date]:
    """
    Convertit une date ISO (`2025-10-01`), un timestamp ISO ou un objet date/datetime en `date`.

    Lève ValueError si la valeur n'est pas interprétable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date_parser.isoparse(value).date()
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid date: {value!r}") from e
    raise ValueError(f"Invalid date: {value!r}")


def to_float(value: Any) -> float:
    """
    Convertit une valeur numérique (les colonnes `numeric` arrivent en str depuis PostgREST).

    Lève ValueError si la valeur n'est pas numérique ou pas finie (NaN, Infinity).
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid number: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid number: {value!r}") from e
    if not math.isfinite(number):
        raise ValueError(f"Invalid number: {value!r}")
    return number


def to_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return to_float(value)


def to_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    number = to_float(value)
    if not number.is_integer():
        raise ValueError(f"Invalid integer: {value!r}")
    return int(number)


def safe_int(value: Any) -> int:
    try:
        if value is None:
            return 0
        return int(value)
    except (TypeError, ValueError):
        return 0


def safe_float(value: Any) -> float:
    try:
        if value is None:
            return 0.0
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def date_to_iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def js_weekday(value: date) -> int:
    """Jour de la semaine avec 0 = dimanche ... 6 = samedi."""
    return (value.weekday() + 1) % 7
