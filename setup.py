"""
Setup script for the OpenTSDB to VictoriaMetrics migration project
"""
from setuptools import find_namespace_packages, setup

setup(
    name="tsmigrate",
    version="1.0.0",
    description="Historical migration of OpenTSDB data into VictoriaMetrics",
    python_requires=">=3.10",
    packages=find_namespace_packages(include=["tsmigrate", "tsmigrate.*"]),
    py_modules=["otsdb_migrate"],
    # keep in sync with requirements.txt
    install_requires=[
        "httpx>=0.24",
        "pydantic>=2.0",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
        "tqdm>=4.64",
        "psutil>=5.9",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "otsdb-migrate=otsdb_migrate:run",
        ],
    },
)
