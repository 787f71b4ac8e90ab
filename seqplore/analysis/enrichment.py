"""Cell type annotation with marker gene databases.

Two complementary approaches in the manner of clustermole:

- Overlaps: the marker genes of a cluster are compared with every cell type
  gene set with a hypergeometric test.
- Enrichment: every cell type gene set is scored in the average expression
  profile of every cluster (singscore or ssGSEA) and the cell types are
  ranked per cluster.

Gene symbols are compared case-insensitively.
"""

import logging

import gseapy
import pandas as pd
from scipy.stats import hypergeom

from seqplore.dtypes.expression import ExpressionMatrix
from seqplore.dtypes.markers import normalize_species
from seqplore.dtypes.stats import bh_adjust
from seqplore.utils.varia import CONFIG

logger = logging.getLogger(__name__)

ENRICHMENT = CONFIG["enrichment"]
ENRICHMENT_METHODS = ["singscore", "ssgsea"]
SET_INFO_COLUMNS = ["celltype_full", "db", "species", "organ", "celltype"]


def _upper_index(expr):
    """Expression frame with upper-case, unique gene names."""
    expr = expr.df if isinstance(expr, ExpressionMatrix) else expr
    expr = pd.DataFrame(expr).astype(float)
    upper = expr.index.astype(str).str.upper()
    expr = expr[~upper.duplicated()]
    expr.index = upper[~upper.duplicated()]
    return expr


def _upper_gene_sets(gene_sets):
    return {
        name: sorted({str(x).upper() for x in genes})
        for name, genes in gene_sets.items()
    }


def marker_overlaps(genes, markers, species="hs", universe=None):
    """Hypergeometric test of a gene list against all marker gene sets.

    Args:
        genes (iterable): Query genes, e.g. the markers of one cluster.
        markers (MarkerSets): Cell type marker gene sets.
        species (str): Only gene sets of this species are tested.
        universe (iterable, optional): All genes that could be drawn.
            Defaults to the union of the marker genes of the species and the
            query genes.

    Returns:
        pd.DataFrame: One row per gene set with the columns 'celltype_full',
            'db', 'species', 'organ', 'celltype', 'n_genes', 'overlap',
            'overlap_genes', 'p_value' and 'fdr', sorted by p-value.

    Raises:
        ValueError: If there are too few query genes or no gene sets.
    """
    min_query = ENRICHMENT["min_query_genes"]
    original = {}
    for gene in genes:
        original.setdefault(str(gene).upper(), str(gene))
    if len(original) < min_query:
        msg = f"At least {min_query} genes are needed, got {len(original)}"
        raise ValueError(msg)
    species_markers = markers.filter(species=normalize_species(species))
    if len(species_markers) == 0:
        msg = f"No marker gene sets for species '{species}'"
        raise ValueError(msg)
    long_df = species_markers.df.assign(
        gene=species_markers.df["gene"].str.upper()
    ).drop_duplicates(["celltype_full", "gene"])
    if universe is None:
        universe = set(long_df["gene"]) | set(original)
    else:
        universe = {str(x).upper() for x in universe}
    query = sorted(set(original) & universe)
    long_df = long_df[long_df["gene"].isin(universe)]
    long_df = long_df.assign(hit=long_df["gene"].isin(query))

    info = species_markers.set_info()[SET_INFO_COLUMNS].set_index(
        "celltype_full"
    )
    grouped = long_df.groupby("celltype_full", sort=True)
    result = info.loc[list(grouped.groups)].copy()
    result["n_genes"] = grouped["gene"].size()
    result["overlap"] = grouped["hit"].sum().astype(int)
    result["overlap_genes"] = long_df[long_df["hit"]].groupby(
        "celltype_full"
    )["gene"].agg(lambda x: ",".join(original[g] for g in sorted(x)))
    result["overlap_genes"] = result["overlap_genes"].fillna("")
    result["p_value"] = hypergeom.sf(
        result["overlap"] - 1, len(universe), result["n_genes"], len(query)
    )
    result["fdr"] = bh_adjust(result["p_value"]).to_numpy()
    result = (
        result.reset_index()
        .sort_values(["p_value", "celltype_full"], kind="stable")
        .reset_index(drop=True)
    )
    logger.info(
        "Tested %d query genes against %d gene sets (universe %d genes)",
        len(query),
        len(result),
        len(universe),
    )
    return result


def cluster_overlaps(markers_by_group, markers, **kwargs):
    """`marker_overlaps` for every group of marker genes.

    Groups with too few genes are skipped with a warning.

    Returns:
        pd.DataFrame: Concatenated results with a leading 'group' column.
    """
    tables = []
    for group, genes in markers_by_group.items():
        try:
            overlaps = marker_overlaps(genes, markers, **kwargs)
        except ValueError as exc:
            logger.warning("Skipping group %s: %s", group, exc)
            continue
        overlaps.insert(0, "group", str(group))
        tables.append(overlaps)
    if not tables:
        msg = "No group has enough marker genes for an overlap test"
        raise ValueError(msg)
    return pd.concat(tables, ignore_index=True)


def _filter_gene_sets(gene_sets, genes, min_size, max_size):
    genes = set(genes)
    filtered = {}
    for name, members in gene_sets.items():
        present = [x for x in members if x in genes]
        if present and min_size <= len(present) <= max_size:
            filtered[name] = present
    logger.info(
        "%d of %d gene sets with %d to %d genes in the data",
        len(filtered),
        len(gene_sets),
        min_size,
        max_size,
    )
    return filtered


def singscore(expr, gene_sets, min_size=None, max_size=None):
    """Rank-based single sample score of every gene set.

    Genes are ranked per sample (highest expression gets the highest rank).
    The mean rank of the set genes is scaled between its theoretical minimum
    and maximum and centered, giving scores in [-0.5, 0.5].

    Args:
        expr (ExpressionMatrix or pd.DataFrame): Genes x samples.
        gene_sets (dict): Gene set name to genes.
        min_size (int): Minimal number of set genes found in `expr`.
        max_size (int): Maximal number of set genes found in `expr`.

    Returns:
        pd.DataFrame: Scores, gene sets x samples.
    """
    min_size = ENRICHMENT["min_size"] if min_size is None else min_size
    max_size = ENRICHMENT["max_size"] if max_size is None else max_size
    expr = _upper_index(expr)
    gene_sets = _filter_gene_sets(
        _upper_gene_sets(gene_sets), expr.index, min_size, max_size
    )
    ranks = expr.rank(axis=0, method="average")
    n_total = len(ranks)
    scores = {}
    for name, genes in gene_sets.items():
        n_set = len(genes)
        lowest = (n_set + 1) / 2
        highest = (2 * n_total - n_set + 1) / 2
        mean_rank = ranks.loc[genes].mean(axis=0)
        span = highest - lowest
        scores[name] = (mean_rank - lowest) / span - 0.5 if span else 0.0
    return pd.DataFrame(scores, index=expr.columns).T


def ssgsea(expr, gene_sets, min_size=None, max_size=None, seed=0):
    """Normalized ssGSEA enrichment score of every gene set (gseapy).

    Returns:
        pd.DataFrame: Normalized enrichment scores, gene sets x samples.
    """
    min_size = ENRICHMENT["min_size"] if min_size is None else min_size
    max_size = ENRICHMENT["max_size"] if max_size is None else max_size
    expr = _upper_index(expr)
    gene_sets = _filter_gene_sets(
        _upper_gene_sets(gene_sets), expr.index, min_size, max_size
    )
    if not gene_sets:
        msg = "No gene set has enough genes in the expression data"
        raise ValueError(msg)
    result = gseapy.ssgsea(
        data=expr,
        gene_sets=gene_sets,
        outdir=None,
        sample_norm_method="rank",
        min_size=min_size,
        max_size=max_size,
        permutation_num=0,
        no_plot=True,
        threads=1,
        seed=seed,
        verbose=False,
    )
    scores = result.res2d.pivot(index="Term", columns="Name", values="NES")
    scores = scores.astype(float)
    scores.index.name = None
    scores.columns.name = None
    return scores[[x for x in expr.columns if x in scores.columns]]


def _long_scores(scores, method):
    long_df = scores.reset_index(names="celltype_full").melt(
        id_vars="celltype_full",
        var_name="sample",
        value_name=f"score_{method}",
    )
    long_df = long_df.dropna(subset=[f"score_{method}"])
    long_df[f"rank_{method}"] = long_df.groupby("sample")[
        f"score_{method}"
    ].rank(ascending=False, method="min")
    return long_df


def marker_enrichment(
    expr,
    markers,
    species="hs",
    method="singscore",
    min_size=None,
    max_size=None,
):
    """Scores and ranks all marker gene sets in every sample or cluster.

    Args:
        expr (ExpressionMatrix or pd.DataFrame): Genes x samples, typically
            the average expression per cluster.
        markers (MarkerSets): Cell type marker gene sets.
        species (str): Species of the gene sets to use.
        method (str): 'singscore', 'ssgsea' or 'all'. With 'all' the ranks
            of all methods are averaged.
        min_size (int): Minimal gene set size in the data.
        max_size (int): Maximal gene set size in the data.

    Returns:
        pd.DataFrame: Columns 'sample', 'celltype_full', 'db', 'species',
            'organ', 'celltype', one 'score_<method>' column per method and
            'score_rank' (1 is best within the sample).
    """
    if method == "all":
        methods = ENRICHMENT_METHODS
    elif method in ENRICHMENT_METHODS:
        methods = [method]
    else:
        msg = (
            f"Unknown method '{method}' (expected one of "
            f"{[*ENRICHMENT_METHODS, 'all']})"
        )
        raise ValueError(msg)
    species_markers = markers.filter(species=normalize_species(species))
    gene_sets = species_markers.to_gene_sets()
    score_functions = {"singscore": singscore, "ssgsea": ssgsea}
    merged = None
    for name in methods:
        scores = score_functions[name](
            expr, gene_sets, min_size=min_size, max_size=max_size
        )
        long_df = _long_scores(scores, name)
        merged = (
            long_df
            if merged is None
            else merged.merge(long_df, on=["sample", "celltype_full"])
        )
    rank_columns = [f"rank_{x}" for x in methods]
    merged["score_rank"] = merged[rank_columns].mean(axis=1)
    info = species_markers.set_info()[SET_INFO_COLUMNS]
    merged = merged.merge(info, on="celltype_full", how="left")
    score_columns = [f"score_{x}" for x in methods]
    columns = [*SET_INFO_COLUMNS, *score_columns, "score_rank"]
    merged = merged.sort_values(
        ["sample", "score_rank", "celltype_full"], kind="stable"
    )
    return merged[["sample", *columns]].reset_index(drop=True)


def top_celltypes(enrichment, n=3):
    """The `n` best ranked cell types of every sample."""
    return (
        enrichment.sort_values(["sample", "score_rank"], kind="stable")
        .groupby("sample", sort=False)
        .head(n)
        .reset_index(drop=True)
    )


def best_celltypes(table, group_column, score_column, ascending=True):
    """The best row of every group as a Series of cell type names."""
    best = table.sort_values(score_column, ascending=ascending, kind="stable")
    best = best.drop_duplicates(group_column)
    return best.set_index(group_column)["celltype"].rename(None)
