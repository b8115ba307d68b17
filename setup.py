"""Setup script for bigcompressor"""
from setuptools import setup
from pathlib import Path
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""
setup(
    name="bigcompressor",
    version="1.0.0",
    author="Big Compressor Project",
    description="Split large directory trees into size-bounded LZ4-compressed tar chunks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=["bigcompressor"],
    python_requires=">=3.9",
    install_requires=["lz4>=4.0.0"],
    extras_require={
        "progress": ["tqdm>=4.60.0", "rich>=12.0.0"],
        "dev": ["pytest>=6.0.0", "black>=22.0.0", "flake8>=4.0.0"],
        "full": ["tqdm>=4.60.0", "rich>=12.0.0"],
    },
    entry_points={
        "console_scripts": [
            "bigcompressor=bigcompressor:cli_main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Archiving :: Compression",
    ],
)
