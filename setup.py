"""Setup configuration for mdsm."""

from setuptools import setup, find_packages

setup(
    name="mdsm",
    version="1.0.0",
    description="Multi-threaded TSM backup scheduler",
    packages=find_packages(include=["mdsm", "mdsm.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "psutil>=5.9",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "mdsm=mdsm.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
