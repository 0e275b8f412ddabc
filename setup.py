"""Setup script for the Adept package."""

from setuptools import setup, find_packages

setup(
    name="adept",
    version="0.1.0",
    packages=find_packages(include=["adept", "adept.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "python-dotenv>=1.0",
        "structlog>=24.1",
        "prometheus-client>=0.20",
        "httpx>=0.27",
        "tenacity>=8.2",
        "langchain-core>=0.2",
        "langchain-ollama>=0.1",
        "redis>=5.0",
        "tzdata>=2024.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="Adept - tool-using assistant orchestration core",
    author="Adept Team",
)
