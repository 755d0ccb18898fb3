#!/usr/bin/env python

from setuptools import setup

setup(
    name="shedflow",
    version="0.1.0",
    description="D8 watershed delineation from digital elevation models.",
    packages=["shedflow"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: GIS",
        "Topic :: Scientific/Engineering :: Hydrology",
    ],
    include_package_data=True,
    install_requires=[
        "affine<3",
        "geojson",
        "numba",
        "numpy",
        "pyproj",
        "rasterio>=1",
        "scikit-image",
        "scipy",
        "typer",
        "typing_extensions",
    ],
    extras_require=dict(
        dev=["pytest", "pytest-cov"],
    ),
    entry_points={
        "console_scripts": ["shedflow=shedflow.cli:app"],
    },
)
