"""
Configuration générale des jobs de demande et de pricing.
"""

import logging
import os
from typing import List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv
from pathlib import Path

# Charger .env depuis la racine du projet
project_root = Path(__file__).parent.parent.parent
load_dotenv(dotenv_path=project_root / ".env")


DEFAULT_SERVICE_TYPES = [
    "hotel",
    "transportation",
    "guide",
    "package",
    "flight",
    "helicopter",
    "permit",
]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"La variable d'environnement {name} doit être un entier (reçu: {raw!r})")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Configuration globale des jobs."""

    # Base de données
    supabase_url: str
    supabase_key: str

    # Devise par défaut des prix
    base_currency: str = "USD"

    # Timezone utilisée pour déterminer "hier" / "aujourd'hui"
    default_timezone: str = "UTC"

    # Types de service agrégés par le job de demande
    service_types: List[str] = field(default_factory=lambda: list(DEFAULT_SERVICE_TYPES))

    # Budget d'exécution d'un job (secondes, wall-clock)
    job_time_budget_seconds: int = 300

    # Fenêtre de recherche des services suivis par le sweep auto-apply
    tracked_service_lookback_days: int = 30

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Crée une instance Settings depuis les variables d'environnement."""
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", os.getenv("SUPABASE_KEY", "")),
            base_currency=os.getenv("BASE_CURRENCY", "USD"),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
            service_types=_env_list("DEMAND_SERVICE_TYPES", DEFAULT_SERVICE_TYPES),
            job_time_budget_seconds=_env_int("JOB_TIME_BUDGET_SECONDS", 300),
            tracked_service_lookback_days=_env_int("TRACKED_SERVICE_LOOKBACK_DAYS", 30),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def apply_log_level(self) -> None:
        """Applique `LOG_LEVEL` au logger racine (configuré par `logging.basicConfig`)."""
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"LOG_LEVEL invalide: {self.log_level!r}")
        logging.getLogger().setLevel(level)
