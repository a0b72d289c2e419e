# setup.py
from setuptools import setup, find_packages

setup(
    name="carebook",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "python-dateutil",
        "matplotlib",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "carebook=carebook.main:run_wizard",
        ],
    },
)
