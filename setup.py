from setuptools import setup, find_packages

setup(
    name="defi-metrics-cache",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog",
        "prometheus-client"
    ],
    extras_require={
        "test": [
            "pytest"
        ]
    },
    python_requires=">=3.8",
)
