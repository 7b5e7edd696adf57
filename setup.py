from setuptools import find_packages, setup

setup(
    name="histboost",
    version="0.1.0",
    description="Histogram-based gradient-boosted tree growth with CPU and GPU histogram backends.",
    packages=find_packages(include=["histboost", "histboost.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "torch>=2.0",
    ],
    extras_require={
        "cuda": ["cupy-cuda12x"],
        "test": ["pytest>=7", "pandas>=1.5"],
        "bench": ["pandas>=1.5", "scikit-learn>=1.2"],
    },
)
