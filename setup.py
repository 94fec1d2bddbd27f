from setuptools import setup, find_packages

setup(
    name="sharepoint-online-manager",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    include_package_data=True,
    install_requires=[
        "azure-identity>=1.14.0",
        "azure-core>=1.29.0",
        "click>=8.0.0",
        "aiohttp>=3.8.0",
        "pyyaml>=6.0.0",
        "rich>=13.0.0",
        "python-json-logger>=3.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "spo-manager=spo_manager.cli.main:main",
        ],
    },
    python_requires=">=3.11",
)
