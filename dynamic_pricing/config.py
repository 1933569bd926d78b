"""
Configuration centrale du moteur de pricing dynamique.

Ce module définit les paramètres globaux utilisés par le moteur :
- devise par défaut,
- score de demande par défaut et seuils des tiers de demande,
- pondération du score de demande et fenêtre de baseline,
- arrondi des prix,
- activation des ajustements intégrés (early bird, groupe, fidélité, demande).

Les valeurs sont initialisées avec des defaults documentés ; elles peuvent
être surchargées par type de service.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from demand_pipeline.config.settings import Settings


@dataclass
class PricingConfig:
    """
    Paramètres de haut niveau pour le moteur de pricing.
    """

    # Devise utilisée si le contexte n'en précise pas
    default_currency: str = "USD"

    # Score renvoyé quand aucune métrique de demande n'est disponible
    default_demand_score: float = 50.0

    # Bornes basses des tiers de demande (score 0-100)
    tier_thresholds: Dict[str, float] = field(
        default_factory=lambda: {
            "LOW": 20.0,
            "NORMAL": 40.0,
            "HIGH": 65.0,
            "VERY_HIGH": 80.0,
        }
    )

    # Pondération des signaux (somme = 1)
    inquiry_weight: float = 0.35
    occupancy_weight: float = 0.35
    conversion_weight: float = 0.30

    # Fenêtre glissante (jours) pour la baseline de normalisation
    demand_baseline_days: int = 28

    # Volume de demandes considéré comme "saturé" sans baseline
    inquiry_saturation: float = 20.0

    # Nombre de décimales des prix (centimes)
    price_decimals: int = 2

    # Applique le multiplicateur de saison comme première étape de la trace
    apply_season_multiplier: bool = False

    # Ajoute les ajustements intégrés (paliers early bird, groupe, fidélité, demande)
    enable_builtin_adjustments: bool = False

    # Longueur maximale d'une simulation (jours)
    max_simulation_days: int = 366


def get_default_pricing_config() -> PricingConfig:
    """
    Retourne une instance de configuration par défaut.

    La devise par défaut vient de `BASE_CURRENCY`.
    """
    return PricingConfig(default_currency=Settings.from_env().base_currency)


def get_pricing_config_for_service(service_type: Optional[str] = None) -> PricingConfig:
    """
    Retourne la configuration à utiliser pour un type de service donné.

    Pour l'instant, tous les types de service partagent la configuration par défaut.
    """
    _ = service_type
    return get_default_pricing_config()
