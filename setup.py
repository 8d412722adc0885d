from setuptools import setup, find_packages

setup(
    name="tabscribe",
    version="0.1.0",
    description="Record a media source and turn it into a timestamped Markdown transcript",
    author="",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyaudio>=0.2.11",
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "soundfile>=0.12.0",
        "faster-whisper>=1.0.0",
        "opencc-python-reimplemented>=0.1.7",
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tabscribe=tabscribe.main:main",
        ],
    },
)
