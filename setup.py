"""
DouyinCaptionExtractor — setuptools build script.

Usage:
    # Development install:
    pip install -e ".[test]"

    # Run the API server:
    python3 main.py
"""

from setuptools import setup

APP_NAME = "DouyinCaptionExtractor"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Douyin share-link resolver and speech-to-text caption extractor",
    packages=[
        "captionkit",
        "captionkit.core",
        "captionkit.web",
    ],
    py_modules=["main"],
    package_data={"captionkit.core": ["a_bogus.js"]},
    install_requires=[
        "httpx>=0.27.0",
        "mini-racer>=0.12.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "douyin-captions=main:main",
        ],
    },
    python_requires=">=3.10",
)
