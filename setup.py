"""
Установочный скрипт для пула конвертации документов.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Чтение README
this_directory = Path(__file__).parent
readme_file = this_directory / "README.md"
long_description = readme_file.read_text(encoding='utf-8') if readme_file.exists() else ""

setup(
    name="document-conversion-pool",
    version="1.0.0",
    author="Conversion Pool Team",
    author_email="team@conversionpool.example.com",
    description="Пул конвертации документов с таймаутами ожидания и выполнения, ретраями и корректной остановкой",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/example/document-conversion-pool",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Office/Business :: Office Suites",
        "Topic :: Text Processing :: Filters",
    ],
    python_requires=">=3.8",
    install_requires=[
        "psutil>=5.9.0",
        "pyyaml>=6.0",
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-mock>=3.10.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
            "isort>=5.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "conversion-pool=conversion_pool.cli:main",
        ],
    },
    keywords="document conversion office pool queue timeout retry graceful shutdown",
    project_urls={
        "Bug Reports": "https://github.com/example/document-conversion-pool/issues",
        "Source": "https://github.com/example/document-conversion-pool",
    },
)
