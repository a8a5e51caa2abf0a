from setuptools import setup, find_packages

setup(
    name="agent_sandbox",
    version="0.1.0",
    description="Agent Sandbox - trust-routed execution and isolation for agent code",
    author="Agent Sandbox Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "protobuf>=4.21.0",
        "opentelemetry-api>=1.14.0",
        "opentelemetry-sdk>=1.14.0",
        "opentelemetry-exporter-otlp>=1.14.0",
        "openai>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov",
            "black",
            "isort",
            "pylint",
        ],
    },
    python_requires=">=3.9",
)
