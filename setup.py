#!/usr/bin/env python3
"""
Setup script for credbag
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="credbag",
    version="1.0.0",
    author="Tyler Zervas",
    author_email="tz-dev@vectorweight.com",
    description="Encrypted bag of typed credentials with ephemeral mounts, verification and rotation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
        "Topic :: System :: Systems Administration :: Authentication/Directory",
    ],
    python_requires=">=3.11",
    install_requires=[
        "boto3>=1.28",
        "click>=8.1",
        "cryptography>=41.0",
        "fusepy>=3.0.1",
        "pydantic>=2.7",
        "PyYAML>=6.0",
        "rich>=13.0",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "credbag=credbag.cli.entry_points:entrypoint",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
