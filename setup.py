"""
Setup script for boreholesim package.
"""

from setuptools import setup, find_packages
import os

# Read requirements
def read_requirements():
    with open('requirements.txt') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

# Read README for long description
def read_readme():
    if os.path.exists('README.md'):
        with open('README.md', 'r', encoding='utf-8') as f:
            return f.read()
    return ""

setup(
    name="boreholesim",
    version="1.0.0",
    description="Borehole heat exchanger simulation on a cylindrical finite-difference grid",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    author="Factor2-Energy",
    author_email="",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=read_requirements(),
    extras_require={
        "gpu": ["cupy"],
        "test": ["pytest"],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="geothermal borehole heat-exchanger BTES finite-difference CUDA",
)
