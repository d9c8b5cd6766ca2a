from setuptools import setup, find_packages

setup(
    name="bookmark_organizer",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "aiohttp",
        "beautifulsoup4",
        "tqdm",
        "pyyaml",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "bookmark-organizer=bookmark_organizer.main:main",
        ],
    },
)
