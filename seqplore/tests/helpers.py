"""Helper functions for unittests."""

import gzip
import uuid

import anndata as ad
import numpy as np
import pandas as pd

from seqplore.dtypes.markers import MarkerSets
from seqplore.utils.files import ensure_directory_exists
from seqplore.utils.varia import SEQPLORE_TMP_DIR

# Create a temporary test directory
TEST_DIR = SEQPLORE_TMP_DIR / "tests"
ensure_directory_exists(TEST_DIR)

CELL_TYPES = {
    "B cells": ["CD19", "MS4A1", "CD79A", "CD79B", "PAX5", "CD22"],
    "T cells": ["CD3D", "CD3E", "CD3G", "CD2", "CD5", "IL7R"],
    "NK cells": ["NKG7", "GNLY", "KLRD1", "KLRF1", "NCAM1", "PRF1"],
    "Monocytes": ["CD14", "LYZ", "CSF1R", "S100A8", "S100A9", "FCN1"],
}
BACKGROUND_GENES = [f"GENE{i}" for i in range(40)]


def _write_binary(path, value):
    if path.suffix == ".gz":
        with gzip.open(path, "wb") as gz_file:
            gz_file.write(value)
    else:
        with open(path, "wb") as file:
            file.write(value)


class TempFile:
    """Creates a temporary file with the given content."""

    def __init__(self, content, suffix):
        self.path = TEST_DIR / (str(uuid.uuid4()) + suffix)
        if isinstance(content, str):
            content = content.encode()
        _write_binary(self.path, content)

    def __del__(self):
        self.path.unlink(missing_ok=True)


TEST_FPKM_CSV = b"""gene,WT_1,WT_2,WT_3,KO_1,KO_2,KO_3
Gata1,120.5,130.2,118.9,10.1,12.4,9.8
Klf1,80.3,85.1,79.4,5.2,6.1,4.9
Hbb-b1,900.0,950.5,910.2,100.4,90.8,95.1
Car1,50.2,48.7,52.3,200.6,210.4,190.2
Car2,60.1,62.3,58.9,180.5,175.2,185.7
Mpo,5.1,4.8,5.5,60.2,58.3,62.7
Elane,3.2,3.5,2.9,40.1,42.6,38.8
Actb,1000.1,1010.5,995.3,1005.7,998.2,1002.4
Gapdh,800.2,805.7,798.1,802.3,799.6,801.9
Cd34,20.3,21.1,19.8,22.4,20.9,21.5
"""

TEST_STATS_CSV = b"""gene,baseMean,log2FoldChange,pvalue,padj
Gata1,70.1,-3.5,1e-10,1e-08
Klf1,44.2,-3.9,2e-09,1e-07
Hbb-b1,500.3,-3.2,5e-12,5e-10
Car1,125.4,2.0,3e-06,1e-04
Car2,120.4,1.6,1e-05,3e-04
Mpo,32.7,3.6,4e-08,1e-06
Elane,21.9,3.7,6e-07,2e-05
Actb,1002.0,0.01,0.9,0.95
Gapdh,801.3,0.005,0.95,0.97
Cd34,21.0,0.1,0.6,0.8
"""

TEST_PANGLAODB_TSV = b"""species\tofficial gene symbol\tcell type\tnicknames\tcanonical marker\tgerm layer\torgan
Mm Hs\tCD19\tB cells\t\t1\tMesoderm\tImmune system
Mm Hs\tMS4A1\tB cells\tCD20\t1\tMesoderm\tImmune system
Mm Hs\tCD79A\tB cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD79B\tB cells\t\t1\tMesoderm\tImmune system
Mm Hs\tPAX5\tB cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD22\tB cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD3D\tT cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD3E\tT cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD3G\tT cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD2\tT cells\t\t1\tMesoderm\tImmune system
Mm Hs\tCD5\tT cells\t\t1\tMesoderm\tImmune system
Hs\tIL7R\tT cells\t\t1\tMesoderm\tImmune system
Hs\tNKG7\tNK cells\t\t1\tMesoderm\tImmune system
Hs\tGNLY\tNK cells\t\t1\tMesoderm\tImmune system
Hs\tKLRD1\tNK cells\t\t1\tMesoderm\tImmune system
Hs\tKLRF1\tNK cells\t\t1\tMesoderm\tImmune system
Hs\tNCAM1\tNK cells\t\t1\tMesoderm\tImmune system
Mm\tHBB-BS\tErythroid-like cells\t\t1\tMesoderm\tBlood
Mm\tGYPA\tErythroid-like cells\t\t1\tMesoderm\tBlood
"""

TEST_GMT = (
    "B_cells\tImmune system\tCD19\tMS4A1\tCD79A\tCD79B\tPAX5\n"
    "T_cells\thttp://example.org\tCD3D\tCD3E\tCD3G\tCD2\tCD5\n"
    "broken_line\n"
)


def make_marker_sets(cell_types=None, species="hs", db="test"):
    """Marker sets of the planted cell types."""
    return MarkerSets.from_dict(
        cell_types or CELL_TYPES, species=species, db=db, organ="Blood"
    )


def make_expression(n_per_type=5, seed=0, cell_types=None, mixed=()):
    """Synthetic log-expression (genes x cells) with planted marker genes.

    Every gene has a fixed baseline shared by all cells and all data sets
    plus a little noise per cell.
    The marker genes of the cell type of a cell are raised above all
    baselines. Cells listed in `mixed` (pairs of cell types) express the
    markers of both types.

    Returns:
        tuple: (pd.DataFrame of log-expression, pd.Series of labels).
    """
    rng = np.random.default_rng(seed)
    cell_types = cell_types or CELL_TYPES
    genes = [x for markers in cell_types.values() for x in markers]
    genes += BACKGROUND_GENES
    baseline = np.random.default_rng(0).uniform(0, 3, len(genes))
    columns = {}
    labels = {}

    def _cell(expressed):
        values = baseline + rng.normal(0, 0.05, len(genes))
        values[np.isin(genes, expressed)] += 5
        return values

    for celltype, markers in cell_types.items():
        for i in range(n_per_type):
            name = f"{celltype.split()[0]}_{i}"
            columns[name] = _cell(markers)
            labels[name] = celltype
    for type_a, type_b in mixed:
        name = f"mixed_{type_a.split()[0]}_{type_b.split()[0]}"
        columns[name] = _cell(cell_types[type_a] + cell_types[type_b])
        labels[name] = type_a
    expr = pd.DataFrame(columns, index=genes)
    return expr, pd.Series(labels, name="label")


def make_counts_adata(n_per_type=60, seed=0, n_mt=3):
    """AnnData with Poisson counts of three planted populations.

    Returns:
        AnnData: Raw counts with the true population in `obs['truth']`.
    """
    rng = np.random.default_rng(seed)
    cell_types = dict(list(CELL_TYPES.items())[:3])
    genes = [x for markers in cell_types.values() for x in markers]
    genes += BACKGROUND_GENES + [f"MT-GENE{i}" for i in range(n_mt)]
    base_rate = rng.uniform(0.5, 3, len(genes))
    blocks = []
    truth = []
    for celltype, markers in cell_types.items():
        rate = base_rate.copy()
        rate[np.isin(genes, markers)] += 20
        blocks.append(rng.poisson(rate, size=(n_per_type, len(genes))))
        truth += [celltype] * n_per_type
    counts = np.vstack(blocks).astype(np.float32)
    obs = pd.DataFrame(
        {"truth": pd.Categorical(truth)},
        index=[f"cell{i}" for i in range(len(truth))],
    )
    return ad.AnnData(X=counts, obs=obs, var=pd.DataFrame(index=genes))
