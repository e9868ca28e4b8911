"""
Setup script for the Thematic Analyzer package.
"""

from setuptools import setup, find_packages

# Read the README for the long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements from requirements.txt
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith('#')]

setup(
    name="thematic-analyzer",
    version="0.1.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Embedding-based reflexive thematic analysis: codes, coherent themes and saturation reports",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/thematic-analyzer",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "thematic-analyzer=thematic_analyzer.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
