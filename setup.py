#!/usr/bin/env python

from setuptools import find_packages, setup

setup(
    name="stackrepl",
    version="0.1.0",
    description="Interactive shell for exploring a deployment stack",
    packages=find_packages("src"),
    include_package_data=True,
    package_dir={"": "src"},
    package_data={"": ["*.md"], "stackrepl": ["data/*.cfg.dist"]},
    python_requires=">=3.10",
    install_requires=[
        "twisted>=23.10.0",
        "zope.interface",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "stackrepl = stackrepl.scripts.stackrepl:main",
        ],
    },
)
