"""
Validateurs des données de demande.
"""

import logging
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)

# Compteurs qu'un signal manuel ou de tracking peut incrémenter
SIGNAL_COUNTERS = (
    "search_count",
    "inquiry_count",
    "quote_request_count",
    "quotes_generated",
    "bookings_confirmed",
    "available_inventory",
    "booked_inventory",
)


def validate_data(data: Dict[str, Any], schema: Dict[str, type]) -> bool:
    """
    Valide des données selon un schéma.

    Args:
        data: Données à valider
        schema: Schéma avec {field: type}

    Returns:
        True si valides
    """
    for field_name, expected_type in schema.items():
        if field_name not in data:
            logger.warning(f"Missing field: {field_name}")
            return False

        if data[field_name] is not None and not isinstance(data[field_name], expected_type):
            logger.warning(
                f"Invalid type for {field_name}: expected {expected_type}, "
                f"got {type(data[field_name])}"
            )
            return False

    return True


def validate_signal_counters(counters: Dict[str, Any], allowed: Iterable[str] = SIGNAL_COUNTERS) -> Dict[str, int]:
    """
    Vérifie les incréments d'un signal de demande.

    Args:
        counters: {compteur: incrément}
        allowed: Compteurs acceptés

    Returns:
        Les incréments non nuls, en entiers

    Raises:
        ValueError: compteur inconnu, valeur non entière ou négative
    """
    allowed_set = set(allowed)
    cleaned: Dict[str, int] = {}
    for name, value in counters.items():
        if name not in allowed_set:
            raise ValueError(f"Unknown demand counter: {name}")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Demand counter {name} must be an integer (got {value!r})")
        if value < 0:
            raise ValueError(f"Demand counter {name} must not be negative (got {value})")
        if value:
            cleaned[name] = value
    return cleaned
