#!/usr/bin/env python
"""
Setup script for ISSA
Hybrid knowledge retrieval engine for the Takaful assistant
"""
from pathlib import Path

from setuptools import find_packages, setup

this_directory = Path(__file__).parent
readme = this_directory / "README.md"
long_description = readme.read_text(encoding="utf-8") if readme.exists() else ""

version = "0.1.0"


setup(
    name="issa",
    version=version,
    author="ROI Takaful",
    description="Hybrid knowledge retrieval for a Takaful assistant",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Natural Language :: French",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Text Processing :: Indexing",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.6.0",
        "loguru>=0.7.2",
        "pyyaml>=6.0.0",
        "numpy>=2.3.0",
        "transformers>=4.52.4",
        "torch>=2.7.1",
        "click>=8.1.0",
        "rich>=13.0.0",
        "nltk>=3.8.1",
        "rapidfuzz>=3.6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=8.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=5.0.0",
            "mypy>=1.8.0",
            "black>=22.0.0",
            "ruff>=0.12.0",
            "types-pyyaml>=6.0.12",
        ],
    },
    entry_points={
        "console_scripts": [
            "issa=issa.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "issa": [
            "**/*.yaml",
            "**/*.yml",
            "**/*.sql",
            "**/*.pyi",
        ],
    },
)
