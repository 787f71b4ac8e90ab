"""Reference-based cell type annotation.

Correlation classifier in the manner of SingleR: every test cell (or
cluster) is correlated (Spearman) with every labeled reference profile over
the genes that distinguish the reference labels. The score of a label is a
high quantile of its correlations. Fine-tuning repeats the scoring with the
marker genes of the best candidate labels only, and pruning flags cells whose
best score does not stand out from the rest.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import scanpy as sc
from scipy.stats import median_abs_deviation

from seqplore.analysis.heatmap import expression_heatmap
from seqplore.analysis.singlecell import expression_frame
from seqplore.dtypes.expression import ExpressionMatrix
from seqplore.utils.varia import CONFIG

logger = logging.getLogger(__name__)

REFERENCE = CONFIG["reference"]


def _as_frame(expr):
    if isinstance(expr, ExpressionMatrix):
        return expr.df
    return pd.DataFrame(expr).astype(float)


def _as_labels(labels, index):
    labels = pd.Series(np.asarray(labels), index=index, name="label")
    return labels.astype(str)


def aggregate_reference(expr, labels):
    """Mean profile of every label (genes x labels)."""
    expr = _as_frame(expr)
    labels = _as_labels(labels, expr.columns)
    return expr.T.groupby(labels.to_numpy(), sort=True).mean().T


def default_de_n(n_labels):
    """Number of marker genes per label pair, decreasing with label count."""
    return int(round(500 * (2 / 3) ** np.log2(n_labels)))


def select_marker_genes(ref, labels, de_n=None):
    """Genes separating every ordered pair of labels.

    For labels A and B, the genes with the largest positive difference of
    the median expression of A minus the median expression of B are the
    markers of A against B.

    Args:
        ref (pd.DataFrame): Log-expression, genes x reference samples.
        labels (array_like): Label of every reference sample.
        de_n (int, optional): Number of genes per pair. Defaults to
            `default_de_n`.

    Returns:
        dict: {A: {B: [genes]}} for all labels A != B.
    """
    ref = _as_frame(ref)
    labels = _as_labels(labels, ref.columns)
    medians = ref.T.groupby(labels.to_numpy(), sort=True).median().T
    de_n = de_n or default_de_n(medians.shape[1])
    markers = {}
    for label_a in medians.columns:
        markers[label_a] = {}
        for label_b in medians.columns:
            if label_a == label_b:
                continue
            diff = medians[label_a] - medians[label_b]
            diff = diff[diff > 0].sort_values(ascending=False, kind="stable")
            markers[label_a][label_b] = diff.index[:de_n].tolist()
    return markers


class ReferenceModel:
    """Labeled reference prepared for classification.

    Attributes:
        ref (pd.DataFrame): Log-expression, genes x reference samples.
        labels (pd.Series): Label per reference sample.
        markers (dict): Pairwise marker genes (see `select_marker_genes`).
        de_n (int): Number of marker genes per label pair.
    """

    def __init__(self, ref, labels, markers, de_n):
        self.ref = ref
        self.labels = labels
        self.markers = markers
        self.de_n = de_n

    @property
    def genes(self):
        """Union of all marker genes, sorted."""
        return sorted(
            {
                gene
                for label_markers in self.markers.values()
                for genes in label_markers.values()
                for gene in genes
            }
        )

    def classes(self):
        return sorted(self.labels.unique())

    def marker_union(self, labels):
        """Marker genes between all pairs of the given labels."""
        return sorted(
            {
                gene
                for label_a in labels
                for label_b in labels
                if label_a != label_b
                for gene in self.markers[label_a][label_b]
            }
        )

    def info(self, output_format="txt"):
        """Short description used on top of the reports."""
        items = {
            "Reference samples": self.ref.shape[1],
            "Labels": len(self.classes()),
            "Marker genes": len(self.genes),
            "Genes per label pair": self.de_n,
        }
        if output_format == "html":
            rows = "".join(
                f"<tr><td class='info-label'>{key}</td>"
                f"<td class='info-value'>{value}</td></tr>"
                for key, value in items.items()
            )
            return f"<h2>Reference</h2><table>{rows}</table>"
        return "\n".join(f"{key}: {value}" for key, value in items.items())

    def __str__(self):
        lines = [
            "ReferenceModel(",
            f"    samples: {self.ref.shape[1]}",
            f"    labels: {self.classes()}",
            f"    marker genes: {len(self.genes)}",
            ")",
        ]
        return "\n".join(lines)

    def __repr__(self):
        return str(self)


def train_reference(ref, labels, de_n=None, aggregate=False):
    """Prepares a labeled reference for `classify`.

    Args:
        ref (ExpressionMatrix or pd.DataFrame): Log-expression of the
            reference, genes x samples.
        labels (array_like): Label of every reference sample.
        de_n (int, optional): Marker genes per label pair.
        aggregate (bool): Replace the samples of each label by their mean
            profile.

    Raises:
        ValueError: If the number of labels does not match the number of
            samples or there are less than two labels.
    """
    ref = _as_frame(ref)
    if len(labels) != ref.shape[1]:
        msg = (
            f"Got {len(labels)} labels for {ref.shape[1]} reference samples"
        )
        raise ValueError(msg)
    labels = _as_labels(labels, ref.columns)
    ref = ref.dropna(axis=0, how="any")
    if aggregate:
        ref = aggregate_reference(ref, labels)
        labels = _as_labels(ref.columns, ref.columns)
    if labels.nunique() < 2:
        msg = "The reference needs at least two different labels"
        raise ValueError(msg)
    markers = select_marker_genes(ref, labels, de_n)
    de_n = de_n or default_de_n(labels.nunique())
    model = ReferenceModel(ref, labels, markers, de_n)
    logger.info("Trained %s", model)
    return model


def _rank_normalize(values):
    """Column ranks, centered and scaled to unit norm."""
    ranks = values.rank(axis=0).to_numpy()
    centered = ranks - ranks.mean(axis=0)
    norm = np.sqrt((centered**2).sum(axis=0))
    norm[norm == 0] = np.nan
    return centered / norm


def _label_scores(test, ref, ref_labels, quantile):
    """Label scores of the test columns against reference columns."""
    corr = _rank_normalize(test).T @ _rank_normalize(ref)
    corr = pd.DataFrame(
        np.nan_to_num(corr, nan=0.0), index=test.columns, columns=ref.columns
    )
    scores = corr.T.groupby(ref_labels.to_numpy(), sort=True).quantile(
        quantile
    )
    return scores.T


def score_cells(test, model, genes=None, quantile=None):
    """Spearman based score of every test column for every label.

    Args:
        test (pd.DataFrame): Log-expression, genes x cells.
        model (ReferenceModel): The trained reference.
        genes (list, optional): Genes to correlate on. Defaults to the marker
            genes of the model present in `test`.
        quantile (float): Quantile of the correlations with the samples of a
            label giving the score of that label. Defaults to 0.8.

    Returns:
        pd.DataFrame: Scores, cells x labels.
    """
    quantile = REFERENCE["quantile"] if quantile is None else quantile
    test = _as_frame(test)
    if genes is None:
        genes = [x for x in model.genes if x in test.index]
    if len(genes) == 0:
        msg = "No marker genes of the reference found in the test data"
        raise ValueError(msg)
    scores = _label_scores(
        test.loc[genes], model.ref.loc[genes], model.labels, quantile
    )
    scores.index.name = "cell"
    return scores


def fine_tune_labels(test, model, scores, quantile=None, tune_thresh=None):
    """Refines the labels by rescoring the best candidates.

    For every cell, the labels scoring within `tune_thresh` of the best one
    are kept and rescored with the marker genes between these labels only.
    This is repeated until one label remains or the candidates stop
    shrinking.

    Returns:
        pd.DataFrame: Columns 'label' and 'delta_next' (difference between
            the best and second best score of the last round) per cell.
    """
    quantile = REFERENCE["quantile"] if quantile is None else quantile
    tune_thresh = (
        REFERENCE["tune_thresh"] if tune_thresh is None else tune_thresh
    )
    test = _as_frame(test)
    available = set(test.index)
    gene_cache = {}
    results = {}
    for cell, cell_scores in scores.iterrows():
        top = cell_scores[cell_scores >= cell_scores.max() - tune_thresh]
        last = cell_scores
        while len(top) > 1:
            candidates = tuple(sorted(top.index))
            if candidates not in gene_cache:
                gene_cache[candidates] = [
                    x for x in model.marker_union(candidates) if x in available
                ]
            genes = gene_cache[candidates]
            if not genes:
                break
            is_candidate = model.labels.isin(candidates)
            new_scores = _label_scores(
                test.loc[genes, [cell]],
                model.ref.loc[genes, is_candidate],
                model.labels[is_candidate],
                quantile,
            ).iloc[0]
            last = new_scores
            new_top = new_scores[
                new_scores >= new_scores.max() - tune_thresh
            ]
            if len(new_top) == len(top):
                top = new_scores
                break
            top = new_top
        ordered = last.sort_values(ascending=False).to_numpy()
        delta_next = ordered[0] - ordered[1] if len(ordered) > 1 else np.nan
        results[cell] = (top.idxmax(), delta_next)
    tuned = pd.DataFrame.from_dict(
        results, orient="index", columns=["label", "delta_next"]
    )
    tuned.index.name = scores.index.name
    return tuned


def prune_scores(scores, labels, nmads=None, min_diff_med=-np.inf):
    """Flags cells with a low-confidence label.

    The confidence of a cell is the difference between its best score and
    the median of its scores. Within every label, cells whose difference is
    more than `nmads` median absolute deviations below the median difference
    of the label (or below `min_diff_med`) are pruned.

    Returns:
        pd.Series: True for pruned cells.
    """
    nmads = REFERENCE["nmads"] if nmads is None else nmads
    delta = scores.max(axis=1) - scores.median(axis=1)
    labels = pd.Series(np.asarray(labels), index=scores.index)
    pruned = pd.Series(False, index=scores.index, name="pruned")
    for _, delta_label in delta.groupby(labels.to_numpy()):
        median = delta_label.median()
        mad = median_abs_deviation(delta_label.to_numpy(), scale="normal")
        pruned[delta_label.index] = delta_label < median - nmads * mad
    pruned |= delta < min_diff_med
    logger.info("Pruned %d of %d labels", pruned.sum(), len(pruned))
    return pruned


@dataclass
class ReferenceAnnotation:
    """Data container for the result of a reference-based annotation."""

    scores: pd.DataFrame
    first_labels: pd.Series
    labels: pd.Series
    pruned_labels: pd.Series
    delta_next: pd.Series

    def to_frame(self):
        """One row per cell or cluster with labels and confidence."""
        return pd.DataFrame(
            {
                "first_label": self.first_labels,
                "label": self.labels,
                "pruned_label": self.pruned_labels,
                "delta_next": self.delta_next,
                "max_score": self.scores.max(axis=1),
            }
        )


def classify(
    test,
    model,
    *,
    clusters=None,
    fine_tune=True,
    quantile=None,
    tune_thresh=None,
    prune=True,
):
    """Labels the test cells (or clusters) with the reference labels.

    Args:
        test (ExpressionMatrix or pd.DataFrame): Log-expression, genes x
            cells.
        model (ReferenceModel): The trained reference.
        clusters (array_like, optional): Cluster of every test cell. If
            given, cells are averaged per cluster and clusters are labeled.
        fine_tune (bool): Refine the labels, see `fine_tune_labels`.
        quantile (float): Score quantile, see `score_cells`.
        tune_thresh (float): Threshold of the fine-tuning.
        prune (bool): Compute pruned labels, see `prune_scores`.

    Returns:
        ReferenceAnnotation: Scores and labels per cell or cluster.

    Raises:
        ValueError: If test and reference have no genes in common.
    """
    test = _as_frame(test)
    if clusters is not None:
        clusters = _as_labels(clusters, test.columns)
        test = test.T.groupby(clusters.to_numpy(), sort=True).mean().T
        test.columns = test.columns.astype(str)
        logger.info("Classifying %d clusters", test.shape[1])
    test = test[~test.index.duplicated()]
    common = test.index[test.index.isin(model.ref.index)]
    if len(common) == 0:
        msg = "Test data and reference have no genes in common"
        raise ValueError(msg)
    test = test.loc[common]
    common_set = set(common)
    genes = [x for x in model.genes if x in common_set]
    logger.info(
        "Scoring %d columns on %d marker genes", test.shape[1], len(genes)
    )
    scores = score_cells(test, model, genes, quantile)
    first_labels = scores.idxmax(axis=1).rename("first_label")
    if fine_tune:
        tuned = fine_tune_labels(test, model, scores, quantile, tune_thresh)
        labels = tuned["label"]
        delta_next = tuned["delta_next"]
    else:
        labels = first_labels.copy()
        ordered = np.sort(scores.to_numpy(), axis=1)
        delta_next = pd.Series(
            ordered[:, -1] - ordered[:, -2], index=scores.index
        )
    labels = labels.rename("label")
    delta_next = delta_next.rename("delta_next")
    if prune:
        pruned = prune_scores(scores, labels)
        pruned_labels = labels.where(~pruned)
    else:
        pruned_labels = labels.copy()
    return ReferenceAnnotation(
        scores=scores,
        first_labels=first_labels,
        labels=labels,
        pruned_labels=pruned_labels.rename("pruned_label"),
        delta_next=delta_next,
    )


def annotate_with_reference(
    test, ref, labels, *, de_n=None, aggregate=False, **kwargs
):
    """Trains the reference and classifies the test data in one step."""
    model = train_reference(ref, labels, de_n=de_n, aggregate=aggregate)
    return classify(test, model, **kwargs)


def score_heatmap(annotation, *, show_labels=True, title="Label scores"):
    """Heatmap of the scores (labels x cells) ordered by assigned label.

    Scores of every cell are rescaled to [0, 1].
    """
    scores = annotation.scores
    low = scores.min(axis=1)
    span = (scores.max(axis=1) - low).replace(0, 1)
    normalized = scores.sub(low, axis=0).div(span, axis=0)
    order = annotation.labels.sort_values(kind="stable").index
    normalized = normalized.loc[order].T
    col_annotation = None
    if show_labels:
        col_annotation = pd.DataFrame(
            {
                "label": annotation.labels[order],
                "pruned": annotation.pruned_labels[order].isna().map(
                    {True: "yes", False: "no"}
                ),
            }
        )
    return expression_heatmap(
        normalized,
        scale="none",
        cluster_rows=True,
        cluster_cols=False,
        col_annotation=col_annotation,
        title=title,
    )


def make_reports(annotation, info="", output_format="txt", n_top=10):
    """Textual report per cell or cluster with its best scores.

    Args:
        annotation (ReferenceAnnotation): Result of `classify`.
        info (str): Printed before the scores, e.g. `ReferenceModel.info`.
        output_format (str): 'txt' or 'html'.
        n_top (int): Number of labels listed.

    Returns:
        list[str]: One report per cell or cluster.
    """
    if output_format not in ("txt", "html"):
        msg = f"Unknown output format '{output_format}'"
        raise ValueError(msg)
    reports = []
    for cell_id, row in annotation.scores.iterrows():
        top_scores = row.nlargest(n_top)
        label = annotation.labels[cell_id]
        pruned = pd.isna(annotation.pruned_labels[cell_id])
        label_str = f"{label} (pruned)" if pruned else str(label)
        if output_format == "txt":
            report_lines = [
                str(cell_id),
                "=" * len(str(cell_id)),
                f"\n{info}\n" if info else "",
                f"Label: {label_str}",
                f"Delta to next label: {annotation.delta_next[cell_id]:.4f}",
                "\nScores:",
            ]
            label_len = max(len(str(x)) for x in top_scores.index)
            formatted_lines = [
                f"{name:<{label_len}} : {score:6.3f}"
                for name, score in top_scores.items()
            ]
            dashes = "-" * max(len(line) for line in formatted_lines)
            report_lines.extend([dashes, *formatted_lines, dashes])
        else:
            report_lines = [
                f"<h1>{cell_id}</h1>",
                info,
                f"<h2>Label: {label_str}</h2>",
                "<div class='score-result'>",
                "<table>",
            ]
            report_lines.extend(
                (
                    f"<tr><td class='score-label'>{name}</td>"
                    f"<td class='score-value'>{score:.3f}</td></tr>"
                )
                for name, score in top_scores.items()
            )
            report_lines.extend(["</table>", "</div>"])
        reports.append("\n".join(x for x in report_lines if x))
    return reports


def make_report_page(reports, title=None):
    """Combines html reports into a single page."""
    title_str = f"<h1>{title}</h1><hr>" if title else ""
    body_string = "\n<hr>\n".join(reports)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Annotation Report</title>
    <style>
        body {{
            font-family: Arial, sans-serif;
            color: #333;
            margin: 0 auto;
            max-width: 700px;
            line-height: 1.4;
        }}
        h1 {{
            text-align: center;
            font-size: 1.4em;
        }}
        h2 {{
            font-size: 1.1em;
            margin-bottom: 5px;
        }}
        table {{
            width: 100%;
            max-width: 500px;
            margin: 10px auto;
            border-collapse: collapse;
        }}
        td {{
            padding: 3px 8px;
            border-bottom: 1px solid #ddd;
            font-size: 0.9em;
        }}
        td.info-label, td.score-label {{
            font-weight: bold;
        }}
        td.info-value, td.score-value {{
            text-align: right;
        }}
        .score-result td {{
            background: #e8f1fb;
        }}
    </style>
</head>
<body>
{title_str}
{body_string}
</body>
</html>"""


def load_reference(name=None, label_column=None):
    """Loads a labeled single-cell reference.

    Args:
        name (str or path_like, optional): 'pbmc3k_processed' (scanpy
            dataset, downloaded on first use) or the path of an h5ad file.
            Defaults to '[reference] dataset'.
        label_column (str, optional): Column of `adata.obs` holding the
            labels. Defaults to '[reference] label_column'.

    Returns:
        tuple: (ExpressionMatrix with log-expression, pd.Series of labels).
    """
    name = name or REFERENCE["dataset"]
    label_column = label_column or REFERENCE["label_column"]
    if name == "pbmc3k_processed":
        adata = sc.datasets.pbmc3k_processed()
    elif Path(name).expanduser().exists():
        adata = sc.read_h5ad(Path(name).expanduser())
    else:
        msg = f"Unknown reference '{name}'"
        raise ValueError(msg)
    if label_column not in adata.obs:
        msg = f"Label column '{label_column}' not found in reference"
        raise KeyError(msg)
    expr = ExpressionMatrix(expression_frame(adata, use_raw=True), is_log=True)
    labels = adata.obs[label_column].astype(str)
    logger.info(
        "Loaded reference '%s' with %d samples and %d labels",
        name,
        expr.shape[1],
        labels.nunique(),
    )
    return expr, labels
