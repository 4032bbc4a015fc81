"""
capturepipe - Client-side telemetry capture and delivery toolkit
"""
from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="capturepipe",
    version="0.1.0",
    description="Heatmap and session-replay telemetry capture with batched, unload-safe delivery",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Treat current directory as the capturepipe package
    packages=['capturepipe'],
    package_dir={'capturepipe': '.'},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
        "Topic :: System :: Monitoring",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "playwright>=1.40.0",
        "requests>=2.31.0",
        "deepdiff>=6.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "capturepipe=capturepipe.cli:main",
        ],
    },
)
