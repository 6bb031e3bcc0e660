#!/usr/bin/env python3
"""
NetScout v1.0.0 - Setup Configuration
=====================================

Local network reconnaissance: open ports and service fingerprints,
proxy/VPN detection, and connection geolocation.

Installation:
    pip install .

    OR (development mode):
    pip install -e ".[dev]"

    Creates the 'netscout' console script.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read long description from README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# Core dependencies
REQUIRED_PACKAGES = [
    "scapy>=2.4.5",         # Default gateway from the routing table
    "jsonschema>=4.0.0",    # Configuration validation
    "requests>=2.28.0",     # ip-api.com egress/peer lookups
    "colorama>=0.4.4",      # Cross-platform colored output
    "psutil>=5.9.0",        # Processes, interfaces, connections, I/O counters
    "cachetools>=5.0.0",    # Geolocation TTL cache
    "geoip2>=4.6.0",        # Offline GeoLite2-City lookups
    "fastapi>=0.100.0",     # REST API
    "pydantic>=2.0.0",      # API models
    "uvicorn>=0.22.0",      # API server
]

# Optional dependencies
EXTRAS_REQUIRE = {
    "nmap": [
        "python-nmap>=0.7.1",  # Optional version-scan enhancement
    ],
    "dev": [
        "pytest>=7.0.0",    # Testing
        "pytest-cov>=4.0.0", # Coverage reporting
        "httpx>=0.24.0",    # FastAPI TestClient
        "black>=22.0.0",    # Code formatting
        "pylint>=2.14.0",   # Linting
        "mypy>=0.950",      # Type checking
    ],
}

setup(
    # Package Information
    name="netscout",
    version="1.0.0",
    description="Local network reconnaissance: ports, services, proxy/VPN detection and connection geolocation",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "Operating System :: Microsoft :: Windows",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Networking",
        "Topic :: System :: Networking :: Monitoring",
    ],

    keywords=[
        "network",
        "port-scanner",
        "fingerprinting",
        "vpn-detection",
        "proxy-detection",
        "geolocation",
    ],

    # Package Configuration
    packages=find_packages(exclude=["tests", "tests.*"]),

    # Python Version Requirement
    python_requires=">=3.9",

    # Dependencies
    install_requires=REQUIRED_PACKAGES,
    extras_require=EXTRAS_REQUIRE,

    # Entry Points (Console Scripts)
    entry_points={
        "console_scripts": [
            "netscout=netscout.cli:main",
        ],
    },

    zip_safe=False,
)
