"""Setup script for ziit-watcher.

Installs the ``ziit_watcher`` package and the ``ziit-watcher`` console script.
Test dependencies are available through the ``test`` extra.
"""

from setuptools import setup, find_packages
import os

def get_version():
    """Read version from __init__.py."""
    init_py = os.path.join(os.path.dirname(__file__), "ziit_watcher", "__init__.py")
    if os.path.exists(init_py):
        with open(init_py, "r", encoding="utf-8") as f:
            for line in f:
                if line.startswith("__version__"):
                    delim = '"' if '"' in line else "'"
                    return line.split(delim)[1]
    return "0.1.0"

def get_long_description():
    """Read long description from README.md."""
    readme = os.path.join(os.path.dirname(__file__), "README.md")
    if os.path.exists(readme):
        with open(readme, "r", encoding="utf-8") as f:
            return f.read()
    return ""

setup(
    name="ziit-watcher",
    version=get_version(),
    description="Coding activity tracker that sends heartbeats to a Ziit server, with offline buffering",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.25",
        "watchdog>=4.0",
        "tomli>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ziit-watcher=ziit_watcher.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
)
