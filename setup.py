"""
FolderVault setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="foldervault",
    version="0.1.0",
    description="FolderVault — folder trees, cascade deletes and streamed ZIP downloads over a metadata DB and a blob store",
    packages=find_packages(include=["foldervault", "foldervault.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "foldervault=foldervault.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "postgres": [
            "psycopg2-binary>=2.9",
        ],
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
