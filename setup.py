# setup.py
from setuptools import setup, find_packages
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="lensocr",
    version="1.0.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["lensocr", "lensocr.*"]),
    description="Bounded-concurrency AI extraction for multi-page documents.",
    long_description=long_description,
    long_description_content_type='text/markdown',
    python_requires=">=3.9",

    install_requires=[
        "PyMuPDF",
        "Pillow",
        "tqdm",
        "python-slugify",
        "google-genai",
        "httpx",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        'console_scripts': [
            'lensocr=lensocr.cli:main',
        ],
    },
)
