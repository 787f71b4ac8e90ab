"""Single-cell RNA-seq preprocessing and clustering with scanpy.

The steps mirror the standard Seurat workflow: quality control, library size
normalization, log transformation, selection of highly variable genes,
scaling, PCA, nearest neighbor graph, Leiden clustering and UMAP. All
functions take an `anndata.AnnData` object and return a new one.
"""

import logging
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd
import plotly.express as px
import scanpy as sc
from scipy import sparse

from seqplore.analysis.plots import (
    PLOTLY_RENDER_MODE,
    embedding_plot_from_data,
)
from seqplore.dtypes.tables import read_dataframe
from seqplore.utils.varia import CONFIG

logger = logging.getLogger(__name__)

SINGLECELL = CONFIG["singlecell"]
MARKER_COLUMNS = {
    "names": "gene",
    "scores": "score",
    "logfoldchanges": "log2_fold_change",
    "pvals": "p_value",
    "pvals_adj": "q_value",
}


def read_counts(path):
    """Reads a count matrix.

    Supported are h5ad files, 10x HDF5 files (.h5), 10x 'matrix.mtx'
    directories and text or spreadsheet tables with genes as rows and cells
    as columns.

    Raises:
        FileNotFoundError: If the path does not exist.
    """
    path = Path(path).expanduser()
    if not path.exists():
        msg = f"Count matrix {path} not found"
        raise FileNotFoundError(msg)
    if path.is_dir():
        adata = sc.read_10x_mtx(path, var_names="gene_symbols", cache=False)
    elif path.suffix == ".h5ad":
        adata = sc.read_h5ad(path)
    elif path.suffix == ".h5":
        adata = sc.read_10x_h5(path)
    else:
        counts = read_dataframe(path, index_col=0)
        adata = ad.AnnData(
            X=counts.T.to_numpy(dtype=np.float32),
            obs=pd.DataFrame(index=counts.columns.astype(str)),
            var=pd.DataFrame(index=counts.index.astype(str)),
        )
    adata.var_names_make_unique()
    logger.info(
        "Read %d cells and %d genes from %s", adata.n_obs, adata.n_vars, path
    )
    return adata


def qc_filter(
    adata,
    min_genes=None,
    min_cells=None,
    max_pct_mt=None,
    mt_prefix="MT-",
):
    """Removes low quality cells and rarely detected genes.

    Args:
        adata (AnnData): Raw counts.
        min_genes (int): Minimal number of detected genes per cell.
        min_cells (int): Minimal number of cells expressing a gene.
        max_pct_mt (float): Maximal percentage of mitochondrial counts.
        mt_prefix (str): Prefix of mitochondrial genes (case-insensitive).
    """
    min_genes = SINGLECELL["min_genes"] if min_genes is None else min_genes
    min_cells = SINGLECELL["min_cells"] if min_cells is None else min_cells
    max_pct_mt = SINGLECELL["max_pct_mt"] if max_pct_mt is None else max_pct_mt
    adata = adata.copy()
    adata.var["mt"] = adata.var_names.str.upper().str.startswith(
        mt_prefix.upper()
    )
    sc.pp.calculate_qc_metrics(
        adata, qc_vars=["mt"], percent_top=None, log1p=False, inplace=True
    )
    n_cells, n_genes = adata.n_obs, adata.n_vars
    sc.pp.filter_cells(adata, min_genes=min_genes)
    sc.pp.filter_genes(adata, min_cells=min_cells)
    adata = adata[adata.obs["pct_counts_mt"] < max_pct_mt].copy()
    logger.info(
        "QC: kept %d of %d cells and %d of %d genes",
        adata.n_obs,
        n_cells,
        adata.n_vars,
        n_genes,
    )
    return adata


def preprocess(adata, target_sum=None, n_top_genes=None):
    """Normalizes, log-transforms and marks highly variable genes.

    The raw counts are kept in the layer 'counts' and the log-normalized
    values of all genes in `adata.raw`.
    """
    target_sum = SINGLECELL["target_sum"] if target_sum is None else target_sum
    if n_top_genes is None:
        n_top_genes = SINGLECELL["n_top_genes"]
    adata = adata.copy()
    adata.layers["counts"] = adata.X.copy()
    adata.X = adata.X.astype(np.float32)
    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)
    adata.raw = adata
    sc.pp.highly_variable_genes(
        adata, n_top_genes=min(n_top_genes, adata.n_vars)
    )
    logger.info(
        "Normalized to %s counts per cell, %d highly variable genes",
        target_sum,
        adata.var["highly_variable"].sum(),
    )
    return adata


def cluster(
    adata,
    n_pcs=None,
    n_neighbors=None,
    resolution=None,
    key="leiden",
    seed=0,
):
    """Scales, reduces, clusters (Leiden) and embeds (UMAP) the cells.

    Args:
        adata (AnnData): Log-normalized data from `preprocess`.
        n_pcs (int): Number of principal components.
        n_neighbors (int): Size of the neighborhood graph.
        resolution (float): Leiden resolution, higher gives more clusters.
        key (str): Column in `adata.obs` receiving the cluster labels.
        seed (int): Random state for PCA, neighbors, Leiden and UMAP.

    Returns:
        AnnData: Copy with 'X_pca', 'X_umap' and `adata.obs[key]`.
    """
    n_pcs = SINGLECELL["n_pcs"] if n_pcs is None else n_pcs
    if n_neighbors is None:
        n_neighbors = SINGLECELL["n_neighbors"]
    resolution = SINGLECELL["resolution"] if resolution is None else resolution
    adata = adata.copy()
    sc.pp.scale(adata, max_value=10)
    n_comps = max(1, min(n_pcs, adata.n_obs - 1, adata.n_vars - 1))
    sc.tl.pca(adata, n_comps=n_comps, random_state=seed)
    sc.pp.neighbors(
        adata,
        n_neighbors=min(n_neighbors, adata.n_obs - 1),
        n_pcs=n_comps,
        random_state=seed,
    )
    sc.tl.leiden(
        adata,
        resolution=resolution,
        key_added=key,
        random_state=seed,
        flavor="igraph",
        n_iterations=2,
        directed=False,
    )
    sc.tl.umap(adata, random_state=seed)
    logger.info(
        "Found %d clusters (resolution %s)",
        adata.obs[key].nunique(),
        resolution,
    )
    return adata


def find_markers(
    adata,
    groupby="leiden",
    method="wilcoxon",
    n_genes=100,
    min_log2_fold_change=0.25,
    max_pval_adj=0.05,
):
    """Positive marker genes of every group against all other cells.

    Returns:
        pd.DataFrame: Columns 'group', 'gene', 'score', 'log2_fold_change',
            'p_value' and 'q_value', the genes of each group sorted by score
            (at most `n_genes` per group).
    """
    if groupby not in adata.obs:
        msg = f"Column '{groupby}' not found in adata.obs"
        raise KeyError(msg)
    adata = adata.copy()
    adata.obs[groupby] = adata.obs[groupby].astype(str).astype("category")
    sc.tl.rank_genes_groups(
        adata,
        groupby,
        method=method,
        use_raw=adata.raw is not None,
    )
    markers = sc.get.rank_genes_groups_df(adata, group=None)
    if "group" not in markers:
        markers.insert(0, "group", adata.obs[groupby].cat.categories[0])
    markers = markers.rename(columns=MARKER_COLUMNS)
    markers = markers[
        (markers["log2_fold_change"] >= min_log2_fold_change)
        & (markers["q_value"] <= max_pval_adj)
    ].copy()
    markers["group"] = markers["group"].astype(str)
    markers = (
        markers.groupby("group", sort=False)
        .head(n_genes)
        .reset_index(drop=True)
    )
    columns = ["group", *MARKER_COLUMNS.values()]
    logger.info(
        "Found %d marker genes for %d groups",
        len(markers),
        markers["group"].nunique(),
    )
    return markers[columns]


def markers_by_group(markers_df, n=25):
    """Top `n` marker genes per group as a dict."""
    return {
        str(group): genes.head(n).tolist()
        for group, genes in markers_df.groupby("group", sort=False)["gene"]
    }


def expression_frame(adata, use_raw=True):
    """Genes x cells data frame of the (raw) expression values."""
    source = adata.raw if use_raw and adata.raw is not None else adata
    values = source.X
    if sparse.issparse(values):
        values = values.toarray()
    return pd.DataFrame(
        np.asarray(values).T,
        index=source.var_names.astype(str),
        columns=adata.obs_names.astype(str),
    )


def cluster_average_expression(
    adata, groupby="leiden", use_raw=True, log=True
):
    """Mean expression per cluster (genes x clusters).

    The log-normalized values are averaged on the linear scale and
    transformed back with log1p when `log` is set.
    """
    expr = np.expm1(expression_frame(adata, use_raw=use_raw))
    groups = adata.obs[groupby].astype(str).to_numpy()
    average = expr.T.groupby(groups, sort=True).mean().T
    if log:
        average = np.log1p(average)
    average.columns = average.columns.astype(str)
    return average


def embedding_frame(adata, color, basis="X_umap"):
    """Data frame with the 2D embedding and the values to color by.

    Args:
        adata (AnnData): Annotated data with `adata.obsm[basis]`.
        color (str or list): Columns of `adata.obs` or gene names.
        basis (str): Key of the embedding in `adata.obsm`.
    """
    if basis not in adata.obsm:
        msg = f"Embedding '{basis}' not found (run `cluster` first)"
        raise KeyError(msg)
    coords = np.asarray(adata.obsm[basis])[:, :2]
    embedding_df = pd.DataFrame(
        coords, index=adata.obs_names.astype(str), columns=["x", "y"]
    )
    keys = [color] if isinstance(color, str) else list(color)
    values = sc.get.obs_df(adata, keys=keys, use_raw=adata.raw is not None)
    for key in keys:
        embedding_df[key] = values[key].to_numpy()
    return embedding_df


def umap_plot_from_data(embedding_df, color=None, use_discrete_colors=True):
    """UMAP scatter plot colored by a category or a continuous value."""
    color = color or next(
        x for x in embedding_df.columns if x not in ("x", "y")
    )
    values = embedding_df[color]
    if pd.api.types.is_numeric_dtype(values):
        plot = px.scatter(
            embedding_df,
            x="x",
            y="y",
            color=color,
            labels={"x": "UMAP 1", "y": "UMAP 2"},
            hover_name=embedding_df.index,
            color_continuous_scale="Viridis",
            render_mode=PLOTLY_RENDER_MODE,
            template="simple_white",
        )
        plot.update_traces(marker={"size": 4})
        plot.update_yaxes(scaleanchor="x", scaleratio=1, mirror=True)
        plot.update_xaxes(mirror=True)
        return plot
    plot = embedding_plot_from_data(
        embedding_df, color=color, use_discrete_colors=use_discrete_colors
    )
    plot.update_layout(xaxis_title="UMAP 1", yaxis_title="UMAP 2")
    return plot
