"""Setup script for package installation."""

from setuptools import find_packages, setup

setup(
    name="seqplore",
    version="0.1.0",
    description=(
        "RNA-seq exploration: expression heatmaps and cell type annotation "
        "of single-cell clusters"
    ),
    python_requires=">=3.9",
    packages=find_packages(include=["seqplore", "seqplore.*"]),
    package_data={"seqplore": ["data/config.toml"]},
    install_requires=[
        "anndata",
        "dash",
        "dash-bootstrap-components",
        "gseapy",
        "igraph",
        "leidenalg",
        "numpy",
        "odfpy",
        "openpyxl",
        "pandas",
        "plotly",
        "requests",
        "scanpy>=1.10",
        "scipy>=1.11",
        "toml",
        "tqdm",
        "xxhash",
    ],
    extras_require={
        "test": ["pytest"],
        "export": ["kaleido"],
    },
    entry_points={
        "console_scripts": [
            "seqplore=seqplore.cli:main",
        ],
    },
)
