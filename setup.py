"""Setup configuration for wippulse"""

from setuptools import setup, find_packages

setup(
    name="wip-pulse",
    version="0.1.0",
    description=(
        "Sync in-progress Linear work into a local store and track team "
        "WIP, velocity, productivity and quality metrics."
    ),
    author="wip-pulse Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "wip-pulse=wippulse.main:main",
        ],
    },
)
