"""
powergrid-engine — faction-owned power-distribution network for real-time
strategy simulations.
"""

from setuptools import setup, find_packages

setup(
    name="powergrid-engine",
    version="1.0.0",
    description="Destructible faction power grid with connectivity rebuilds, "
                "proportional flow, cascading blackouts and stability analytics.",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.24",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-cov",
        ],
    },
)
