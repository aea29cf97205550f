"""
Установочный скрипт для трекера доступности воркеров.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Чтение README
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

# Чтение requirements
requirements = []
requirements_file = this_directory / "requirements.txt"
if requirements_file.exists():
    with open(requirements_file, 'r', encoding='utf-8') as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name="worker-availability-tracker",
    version="1.0.0",
    author="Worker Pool Team",
    author_email="team@workerpool.example.com",
    description="Трекер свободных воркеров с записями о простое в Redis, распределенной блокировкой захвата и ожиданием освобождения",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/example/worker-availability-tracker",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
    ],
    python_requires=">=3.9",
    install_requires=requirements or [
        "redis>=5.0.1",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
            "fakeredis>=2.20.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
            "isort>=5.12.0",
        ],
    },
    include_package_data=True,
    keywords="worker pool availability idle tracking distributed lock redis asyncio",
    project_urls={
        "Bug Reports": "https://github.com/example/worker-availability-tracker/issues",
        "Source": "https://github.com/example/worker-availability-tracker",
    },
)
