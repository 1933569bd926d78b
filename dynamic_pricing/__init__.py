"""
Moteur de pricing dynamique de la plateforme.

Ce package contient :
- la configuration globale du moteur (devise, seuils de demande, arrondi),
- les modèles de règles, de contexte et de métriques,
- le score de demande et le calcul du prix (fold des règles),
- la simulation sur une plage de dates et les analytics,
- le journal d'audit des ajustements,
- les interfaces vers Supabase et le serveur JSON (stdin / stdout).
"""
