"""
Setup script for GraphSAGE training package.
"""

from setuptools import setup, find_packages

setup(
    name="graphsage_train",
    version="1.0.0",
    description="Mini-batch GraphSAGE model trainer with negative sampling",
    author="GraphSAGE Train Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"config": ["default.yaml"]},
    python_requires=">=3.8",
    install_requires=[
        "torch>=2.0.0",
        "torch-geometric>=2.4.0",
        "networkx>=3.0",
        "numpy>=1.23.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.3.0",
        ],
    },
)
