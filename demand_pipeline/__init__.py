"""
Jobs planifiés du moteur de pricing dynamique.

Ce package contient :
- la configuration partagée (Supabase, timezone, budget d'exécution),
- le monitoring des jobs (logs en base, alertes),
- le job quotidien d'agrégation de la demande,
- le sweep nocturne des règles auto-apply.
"""
