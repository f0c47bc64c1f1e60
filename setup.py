#!/usr/bin/env python
"""Setup configuration for the Plincare integration engine."""

from setuptools import find_packages, setup

setup(
    name="plincare-integration-engine",
    version="1.0.0",
    description="HL7 v2 / FHIR bridge with CDA generation for the French DMP",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"plincare.healthcare.cda": ["templates/*.xml"]},
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "httpx>=0.25.0",
        "structlog>=23.2.0",
        "jinja2>=3.1.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "plincare-engine=plincare.main:main",
        ],
    },
)
