#!/usr/bin/env python

from setuptools import setup, find_packages


setup(
    name="gcnv_utils",
    version="1.0.0",
    description="Postprocessing of sharded germline CNV caller output into genotyped VCFs and copy ratios",
    package_dir={"": "src"},
    packages=find_packages("src"),
    entry_points={
        "console_scripts": [
            "gcnv-utils=gcnv_utils.command_line:main",
            "gcnv_utils=gcnv_utils.command_line:main"
        ]
    },
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "scipy",
        "pandas",
        "pysam>=0.23.3"
    ],
    extras_require={
        "tests": ["pytest", "pytest-cov"]
    },
    include_package_data=True,
    zip_safe=False
)
