# setup.py
from setuptools import setup, find_packages

setup(
    name="spendlens",
    version="0.1.0",
    description="Bank statement ingestion and spending insights for a personal finance dashboard",
    author="Your Name",
    author_email="you@example.com",
    url="https://github.com/yourusername/spendlens",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "click>=7.0",
        "pyyaml>=5.3",
        "pandas>=1.1",
        "openpyxl>=3.0",
        "xlrd>=2.0.1",
        "python-dotenv>=0.19",
        "supabase>=2.8",
        "httpx>=0.24",
        "fastapi>=0.95",
        "pydantic>=1.10",
        "uvicorn>=0.20",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "spendlens=spendlens.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
