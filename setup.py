"""Setup for the Trustline API and Python SDK."""

from setuptools import setup

API_PACKAGES = [
    "trustline_api",
    "trustline_api.auth",
    "trustline_api.db",
    "trustline_api.detection",
    "trustline_api.export",
    "trustline_api.identity",
    "trustline_api.investigations",
    "trustline_api.ledger",
    "trustline_api.middleware",
    "trustline_api.models",
    "trustline_api.notifications",
    "trustline_api.routes",
    "trustline_api.sessions",
    "trustline_api.utils",
]

setup(
    name="trustline",
    version="0.1.0",
    description="Trustline platform trust and investigation API, with its Python SDK",
    package_dir={
        "trustline_api": "apps/api/trustline_api",
        "trustline_sdk": "packages/sdk-python/trustline_sdk",
    },
    packages=API_PACKAGES + ["trustline_sdk"],
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "sqlalchemy>=2.0.0",
        "alembic>=1.13.0",
        "psycopg2-binary>=2.9.9",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "prometheus-client>=0.19.0",
        "httpx>=0.26.0",
        "reportlab>=4.0.0",
        "click>=8.1.0",
        "requests>=2.31.0",
        "urllib3>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "trustline=trustline_api.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
