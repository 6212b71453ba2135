from pathlib import Path
from setuptools import setup, find_packages

README = Path(__file__).with_name("README.md").read_text(encoding="utf-8")

setup(
    name="limineguard",
    version="0.1.0",
    description="Secure boot signing and limine.conf hash maintenance",
    long_description=README,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.7",
    install_requires=[
        "psutil>=5.9",
        "lief>=0.14",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "limineguard=limineguard.manager:main",
        ]
    },
)
