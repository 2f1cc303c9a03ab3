#!/usr/bin/env python
"""Setup script for OpenSearch Schema Migrations."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

setup(
    name="opensearch-schema-migrations",
    version="0.1.0",
    author="MDMAI Project",
    description="Plan, apply, record and roll back mapping changes on OpenSearch indices",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where=".", include=["schema_migrations*", "config*"]),
    package_dir={"": "."},
    python_requires=">=3.9",
    install_requires=[
        # Search cluster
        "opensearch-py[async]>=2.4.0",

        # Utilities
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",

        # Logging
        "structlog>=23.0.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "pytest-timeout>=2.1.0",
            "hypothesis>=6.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "isort>=5.12.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "pytest-timeout>=2.1.0",
            "hypothesis>=6.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords="opensearch elasticsearch mapping schema migration reindex",
)
