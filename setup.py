#!/usr/bin/env python3
"""
Setup script for netroutes package.
"""

from setuptools import setup

# Read long description from README
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="netroutes",
    version="1.0.0",
    author="Harry Coin",
    author_email="hcoin@quietfountain.com",
    description="Linux routing table metrics for Prometheus, read over RTNetlink",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/hcoin/netroutes",
    packages=["netroutes"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Intended Audience :: Developers",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: System :: Networking",
        "Topic :: System :: Monitoring",
    ],
    python_requires=">=3.8",
    install_requires=[
        "cffi>=1.0.0",
        "setuptools>=61.0",
        "prometheus_client>=0.16.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "netroutes=netroutes.exporter:main",
            "netroutes-links=netroutes.link_info:main",
            "netroutes-route=netroutes.route_info:main",
        ],
    },
)
