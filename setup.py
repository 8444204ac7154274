from setuptools import setup, find_packages

setup(
    name="ratechat",
    version="0.1.0",
    packages=find_packages(include=["ratechat", "ratechat.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.2",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "redis>=5.0.1",
        "httpx>=0.27",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
