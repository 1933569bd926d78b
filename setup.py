"""
Setup script for the dynamic pricing engine packages.
"""

from setuptools import setup, find_packages

setup(
    name="dynamic-pricing-engine",
    version="1.0.0",
    description="Moteur de tarification dynamique par règles et pipeline d'agrégation de la demande",
    author="PricEye Team",
    packages=find_packages(exclude=["*.tests", "*.tests.*", "tests", "scripts"]),
    install_requires=[
        "aiohttp>=3.9.0",
        "supabase>=2.0.0",
        "pandas>=2.0.0",
        "numpy>=1.24.0",
        "python-dotenv>=1.0.0",
        "pytz>=2023.3",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "aggregate-demand=demand_pipeline.jobs.aggregate_demand:main",
            "apply-auto-rules=demand_pipeline.jobs.apply_auto_rules:main",
            "monitor-prices=demand_pipeline.jobs.monitor_prices:main",
            "pricing-server=dynamic_pricing.server:main",
        ],
    },
    python_requires=">=3.9",
)
