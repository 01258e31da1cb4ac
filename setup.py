#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for the City Prosperity Index engine

Installs the ``cityprosperity`` package, its indicator catalog and
database schema, and the ``cpi`` command.
"""

from pathlib import Path

from setuptools import find_packages, setup

VERSION = "1.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")
else:
    long_description = "City Prosperity Index standardization and aggregation engine"

setup(
    name="cityprosperity",
    version=VERSION,
    description="City Prosperity Index standardization and aggregation engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    packages=find_packages(include=["cityprosperity", "cityprosperity.*"]),
    package_data={
        "cityprosperity.registry": ["catalog.yaml"],
        "cityprosperity.storage": ["schema.sql"],
    },
    include_package_data=True,
    install_requires=[
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "typer>=0.9",
        "rich>=13.0",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "cpi=cityprosperity.cli.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
