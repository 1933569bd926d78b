"""
Sous-package `interfaces` du moteur de pricing dynamique.

Toutes les lectures / écritures Supabase passent par `data_access` :
règles, saisons, métriques de demande, journal d'audit, historique de prix
et sources du job d'agrégation (devis, lignes de devis, réservations).
Les tests remplacent cette couche par des mocks.
"""
