"""Clustered expression heatmaps with dendrograms and column annotations.

The layout follows the defaults of the R package pheatmap: rows are z-scored,
rows and columns are clustered with complete linkage on euclidean distances
and the values are colored with the reversed 7-class 'RdYlBu' ColorBrewer
palette.
"""

import logging
import re

import numpy as np
import pandas as pd
import plotly.colors
import plotly.graph_objects as go
from scipy.cluster.hierarchy import dendrogram, leaves_list, linkage
from scipy.spatial.distance import pdist

from seqplore.analysis.plots import discrete_colors, save_figure
from seqplore.dtypes.expression import ExpressionMatrix
from seqplore.dtypes.stats import GeneStats
from seqplore.utils.varia import CONFIG

__all__ = [
    "cluster_order",
    "discrete_colors",
    "expression_heatmap",
    "fpkm_heatmap",
    "heatmap_colorscale",
    "quantile_breaks",
    "sample_groups",
    "save_figure",
    "symmetric_range",
]

logger = logging.getLogger(__name__)

HEATMAP = CONFIG["heatmap"]
SCALE_OPTIONS = ["row", "column", "none"]
DENDROGRAM_LINE = {"color": "#444444", "width": 1}


def cluster_order(df, axis=0, method=None, metric=None):
    """Hierarchical clustering of the rows or columns of a data frame.

    Args:
        df (pd.DataFrame): Numeric table.
        axis (int): 0 clusters rows, 1 clusters columns.
        method (str): Linkage method passed to `scipy.cluster.hierarchy.
            linkage`. Defaults to 'complete'.
        metric (str): Distance metric passed to `pdist`. 'correlation' is
            1 - Pearson correlation. Defaults to 'euclidean'.

    Returns:
        tuple: (labels in dendrogram leaf order, linkage matrix or None if
            there are less than two items).
    """
    method = method or HEATMAP["method"]
    metric = metric or HEATMAP["metric"]
    if axis not in (0, 1):
        msg = f"axis must be 0 or 1, got {axis}"
        raise ValueError(msg)
    labels = list(df.index if axis == 0 else df.columns)
    if len(labels) < 2:
        return labels, None
    values = df.to_numpy(dtype=float)
    if axis == 1:
        values = values.T
    distances = pdist(values, metric=metric)
    if np.isnan(distances).any():
        # Constant vectors have no correlation.
        fill = 1.0 if metric == "correlation" else 0.0
        distances = np.nan_to_num(distances, nan=fill)
    link = linkage(distances, method=method)
    return [labels[i] for i in leaves_list(link)], link


def quantile_breaks(values, n=10):
    """Unique quantiles of all values, usable as color breaks."""
    flat = np.asarray(values, dtype=float).ravel()
    flat = flat[~np.isnan(flat)]
    if len(flat) == 0:
        msg = "Cannot compute breaks without values"
        raise ValueError(msg)
    return np.unique(np.quantile(flat, np.linspace(0, 1, n)))


def symmetric_range(df):
    """(-m, m) with m the largest absolute value."""
    max_abs = float(np.nanmax(np.abs(np.asarray(df, dtype=float))))
    if max_abs == 0:
        max_abs = 1.0
    return -max_abs, max_abs


def heatmap_colorscale(name=None, n=None, reverse=None, breaks=None):
    """Plotly colorscale from a named palette.

    Args:
        name (str): Plotly/ColorBrewer scale name. Defaults to 'RdYlBu'.
        n (int): Number of colors. Defaults to 7. The ColorBrewer colors in
            config [heatmap.brewer] are used when their count is `n`, other
            counts are sampled from the plotly scale.
        reverse (bool): Reverse the palette (high values red). Defaults to
            True.
        breaks (array_like, optional): Sorted color breaks. If given, the
            scale is stepwise with one color per interval and `n` is set to
            `len(breaks) - 1`.

    Returns:
        list: Plotly colorscale as a list of [position, color] pairs.
    """
    name = name or HEATMAP["palette"]
    reverse = HEATMAP["reverse_palette"] if reverse is None else reverse
    if breaks is not None:
        breaks = np.asarray(breaks, dtype=float)
        if len(breaks) < 2 or (np.diff(breaks) <= 0).any():
            msg = "Breaks must be strictly increasing with at least 2 values"
            raise ValueError(msg)
        n = len(breaks) - 1
    n = HEATMAP["n_colors"] if n is None else n
    brewer = HEATMAP["brewer"].get(name)
    if brewer is not None and len(brewer) == n:
        # Same orientation as the plotly scale of that name.
        colors = [
            plotly.colors.label_rgb(plotly.colors.hex_to_rgb(x))
            for x in brewer
        ]
    else:
        palette = plotly.colors.get_colorscale(name)
        colors = plotly.colors.sample_colorscale(
            palette, list(np.linspace(0, 1, max(n, 2))), colortype="rgb"
        )[:n]
    if reverse:
        colors = colors[::-1]
    if breaks is None:
        if n == 1:
            return [[0.0, colors[0]], [1.0, colors[0]]]
        return [[i / (n - 1), color] for i, color in enumerate(colors)]
    positions = (breaks - breaks[0]) / (breaks[-1] - breaks[0])
    scale = []
    for i, color in enumerate(colors):
        scale.append([float(positions[i]), color])
        scale.append([float(positions[i + 1]), color])
    return scale


def _scale_values(df, scale):
    if scale not in SCALE_OPTIONS:
        msg = f"scale must be one of {SCALE_OPTIONS}, got '{scale}'"
        raise ValueError(msg)
    if scale == "row":
        return ExpressionMatrix(df).scale_rows()
    if scale == "column":
        return ExpressionMatrix(df.T).scale_rows().T
    return df.astype(float)


def _dendrogram_traces(link, orientation, xaxis, yaxis):
    """Line traces of a dendrogram in leaf coordinates 0, 1, ..."""
    tree = dendrogram(link, no_plot=True)
    traces = []
    for icoord, dcoord in zip(tree["icoord"], tree["dcoord"]):
        leaf_pos = (np.asarray(icoord) - 5) / 10
        if orientation == "top":
            x, y = leaf_pos, dcoord
        else:
            x, y = dcoord, leaf_pos
        traces.append(
            go.Scatter(
                x=x,
                y=y,
                mode="lines",
                line=DENDROGRAM_LINE,
                hoverinfo="skip",
                showlegend=False,
                xaxis=xaxis,
                yaxis=yaxis,
            )
        )
    return traces


def _annotation_traces(col_annotation, col_labels, xaxis, yaxis):
    """Discrete color bars for the column annotation plus legend entries."""
    annotation = col_annotation.reindex(col_labels).astype(str)
    annotation = annotation.replace("nan", "NA")
    codes = {}
    colors = []
    legend = []
    for column in annotation.columns:
        color_map = discrete_colors(annotation[column])
        for category in sorted(annotation[column].unique()):
            codes[(column, category)] = len(colors)
            colors.append(color_map[category])
            legend.append(
                go.Scatter(
                    x=[None],
                    y=[None],
                    mode="markers",
                    marker={
                        "symbol": "square",
                        "size": 10,
                        "color": color_map[category],
                    },
                    name=category,
                    legendgroup=column,
                    legendgrouptitle_text=column,
                    showlegend=True,
                )
            )
    n_codes = len(colors)
    colorscale = []
    for i, color in enumerate(colors):
        colorscale.append([i / n_codes, color])
        colorscale.append([(i + 1) / n_codes, color])
    z = [
        [codes[(column, value)] for value in annotation[column]]
        for column in annotation.columns
    ]
    text = [
        [f"{sample}<br>{column}: {value}" for sample, value in row.items()]
        for column, row in annotation.items()
    ]
    bars = go.Heatmap(
        z=z,
        x=list(range(len(col_labels))),
        y=list(annotation.columns),
        text=text,
        hovertemplate="%{text}<extra></extra>",
        colorscale=colorscale,
        zmin=-0.5,
        zmax=n_codes - 0.5,
        showscale=False,
        xgap=1,
        ygap=1,
        xaxis=xaxis,
        yaxis=yaxis,
    )
    return [bars, *legend]


def expression_heatmap(
    matrix,
    *,
    scale="row",
    cluster_rows=True,
    cluster_cols=True,
    method=None,
    metric=None,
    col_annotation=None,
    colorscale=None,
    breaks=None,
    title="",
    show_row_names=None,
    show_col_names=None,
):
    """Clustered heatmap of an expression table.

    Args:
        matrix (ExpressionMatrix or pd.DataFrame): Genes x samples values.
        scale (str): 'row' (z-score per gene), 'column' or 'none'. Clustering
            is done on the scaled values.
        cluster_rows (bool): Cluster and reorder the rows.
        cluster_cols (bool): Cluster and reorder the columns.
        method (str): Linkage method, see `cluster_order`.
        metric (str): Distance metric, see `cluster_order`.
        col_annotation (pd.DataFrame or pd.Series, optional): Categories per
            sample, indexed by sample name. One colored bar per column.
        colorscale (str or list, optional): Plotly colorscale. Defaults to
            `heatmap_colorscale()`.
        breaks (array_like, optional): Color breaks (see `quantile_breaks`).
        title (str): Figure title.
        show_row_names (bool, optional): Defaults to True for at most
            '[heatmap] max_row_names' rows.
        show_col_names (bool, optional): Same for the columns.

    Returns:
        plotly.graph_objects.Figure: The heatmap.

    Raises:
        ValueError: For an unknown `scale` or an empty table.
    """
    data_frame = (
        matrix.df
        if isinstance(matrix, ExpressionMatrix)
        else pd.DataFrame(matrix)
    )
    if data_frame.empty:
        msg = "Cannot plot a heatmap of an empty table"
        raise ValueError(msg)
    values = _scale_values(data_frame, scale)

    row_labels, row_link = (
        cluster_order(values, 0, method, metric)
        if cluster_rows
        else (list(values.index), None)
    )
    col_labels, col_link = (
        cluster_order(values, 1, method, metric)
        if cluster_cols
        else (list(values.columns), None)
    )
    values = values.loc[row_labels, col_labels]
    n_rows, n_cols = values.shape
    logger.info("Heatmap with %d rows and %d columns", n_rows, n_cols)

    if breaks is not None:
        breaks = np.sort(np.asarray(breaks, dtype=float))
        zmin, zmax = breaks[0], breaks[-1]
        if colorscale is None:
            colorscale = heatmap_colorscale(breaks=breaks)
    else:
        if scale == "none":
            zmin = np.nanmin(values.to_numpy())
            zmax = np.nanmax(values.to_numpy())
        else:
            zmin, zmax = symmetric_range(values)
        if colorscale is None:
            colorscale = heatmap_colorscale()

    if show_row_names is None:
        show_row_names = n_rows <= HEATMAP["max_row_names"]
    if show_col_names is None:
        show_col_names = n_cols <= HEATMAP["max_row_names"]
    if isinstance(col_annotation, pd.Series):
        col_annotation = col_annotation.to_frame()

    dend = HEATMAP["dendrogram_fraction"]
    x_left = dend if row_link is not None else 0.0
    ann_height = (
        min(0.03 * col_annotation.shape[1], 0.15)
        if col_annotation is not None
        else 0.0
    )
    y_top = 1.0 - (dend if col_link is not None else 0.0) - ann_height
    if col_link is not None or col_annotation is not None:
        y_top -= 0.01

    hover_text = [
        [f"{gene}<br>{sample}" for sample in col_labels] for gene in row_labels
    ]
    fig = go.Figure()
    fig.add_trace(
        go.Heatmap(
            z=values.to_numpy(),
            x=list(range(n_cols)),
            y=list(range(n_rows)),
            text=hover_text,
            hovertemplate="%{text}<br>value: %{z:.3f}<extra></extra>",
            colorscale=colorscale,
            zmin=zmin,
            zmax=zmax,
            colorbar={"x": 1.0, "xanchor": "left", "thickness": 15},
            xaxis="x",
            yaxis="y",
        )
    )
    layout = {
        "xaxis": {
            "domain": [x_left, 1.0],
            "tickmode": "array",
            "tickvals": list(range(n_cols)),
            "ticktext": col_labels,
            "tickangle": -90,
            "showticklabels": show_col_names,
            "showgrid": False,
            "zeroline": False,
        },
        "yaxis": {
            "domain": [0.0, y_top],
            "tickmode": "array",
            "tickvals": list(range(n_rows)),
            "ticktext": row_labels,
            "showticklabels": show_row_names,
            "side": "left" if row_link is None else "right",
            "autorange": "reversed",
            "showgrid": False,
            "zeroline": False,
        },
    }
    hidden = {
        "showticklabels": False,
        "showgrid": False,
        "zeroline": False,
        "showline": False,
        "ticks": "",
    }
    if col_link is not None:
        fig.add_traces(_dendrogram_traces(col_link, "top", "x2", "y2"))
        layout["xaxis2"] = {
            **hidden,
            "domain": [x_left, 1.0],
            "matches": "x",
            "anchor": "y2",
        }
        layout["yaxis2"] = {**hidden, "domain": [1.0 - dend, 1.0]}
    if row_link is not None:
        fig.add_traces(_dendrogram_traces(row_link, "left", "x3", "y3"))
        layout["xaxis3"] = {
            **hidden,
            "domain": [0.0, x_left - 0.005],
            "autorange": "reversed",
            "anchor": "y3",
        }
        layout["yaxis3"] = {
            **hidden,
            "domain": [0.0, y_top],
            "matches": "y",
            "anchor": "x3",
        }
    if col_annotation is not None:
        fig.add_traces(
            _annotation_traces(col_annotation, col_labels, "x4", "y4")
        )
        layout["xaxis4"] = {
            **hidden,
            "domain": [x_left, 1.0],
            "matches": "x",
            "anchor": "y4",
        }
        layout["yaxis4"] = {
            "domain": [y_top + 0.005, y_top + 0.005 + ann_height],
            "showgrid": False,
            "zeroline": False,
            "anchor": "x4",
            "side": "right" if row_link is not None else "left",
        }

    row_height = 12 if show_row_names else 4
    fig.update_layout(
        **layout,
        title=title,
        template="simple_white",
        height=max(450, min(2400, row_height * n_rows + 250)),
        legend={"x": 1.12, "y": 1.0},
        margin={"t": 60 if title else 20},
    )
    return fig


def sample_groups(samples, pattern=None):
    """Group labels derived from sample names.

    Args:
        samples (iterable): Sample names.
        pattern (str, optional): Regular expression whose first group is the
            group label. Without pattern, trailing replicate numbers (for
            example '_1', '-rep2', '3') are removed.

    Returns:
        pd.Series: Group label per sample, indexed by sample name.

    Examples:
        >>> sample_groups(["WT_1", "WT_2", "KO_1"]).tolist()
        ['WT', 'WT', 'KO']
    """
    samples = [str(x) for x in samples]
    groups = []
    for sample in samples:
        if pattern is not None:
            match = re.search(pattern, sample)
            group = match.group(1) if match and match.groups() else sample
        else:
            group = re.sub(r"[-_.]?(rep)?\d+$", "", sample, flags=re.I)
        groups.append(group or sample)
    return pd.Series(groups, index=samples, name="group")


def fpkm_heatmap(
    fpkm,
    stats,
    *,
    n_genes=None,
    q_max=None,
    pseudocount=1,
    sample_pattern=None,
    **kwargs,
):
    """Heatmap of the most significant genes of a differential test.

    Selects the genes with q-value <= `q_max`, keeps the `n_genes` best of
    them, restricts the FPKM table to these genes, log2-transforms it and
    plots it with `expression_heatmap`. Samples are annotated with the
    groups derived from their names.

    Args:
        fpkm (ExpressionMatrix or pd.DataFrame): FPKM values, genes x samples.
        stats (GeneStats or pd.DataFrame): Differential statistics.
        n_genes (int): Number of genes. Defaults to '[heatmap] n_genes'.
        q_max (float): q-value threshold. Defaults to '[heatmap] q_max'.
        pseudocount (float): Added before the log2 transformation.
        sample_pattern (str, optional): See `sample_groups`.
        **kwargs: Passed to `expression_heatmap`.

    Raises:
        ValueError: If no gene passes the threshold or no significant gene is
            in the FPKM table.
    """
    n_genes = HEATMAP["n_genes"] if n_genes is None else n_genes
    q_max = HEATMAP["q_max"] if q_max is None else q_max
    if not isinstance(fpkm, ExpressionMatrix):
        fpkm = ExpressionMatrix(fpkm)
    if not isinstance(stats, GeneStats):
        stats = GeneStats(stats)
    top = stats.significant(q_max=q_max).top(n_genes)
    if len(top) == 0:
        msg = f"No genes with q-value <= {q_max}"
        raise ValueError(msg)
    selected, _ = fpkm.align(top.df)
    if not selected.is_log:
        selected = selected.log_transform(base=2, pseudocount=pseudocount)
    if kwargs.get("col_annotation") is None:
        groups = sample_groups(selected.samples, sample_pattern)
        if 1 < groups.nunique() < len(groups):
            kwargs["col_annotation"] = groups.to_frame()
    kwargs.setdefault(
        "title", f"Top {selected.shape[0]} genes (q-value <= {q_max})"
    )
    return expression_heatmap(selected, **kwargs)
