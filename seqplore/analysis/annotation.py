"""Cell type annotation of single-cell clusters and a Dash-based browser.

The ``ClusterAnnotation`` class collects the results of the three annotation
approaches for the clusters of a processed ``AnnData`` object: marker genes,
reference-based labels and marker database overlaps/enrichment. The results
can be summarized per cluster, written to disk and explored in a small web
application.
"""

import logging
import threading
import webbrowser
from pathlib import Path

import dash_bootstrap_components as dbc
import numpy as np
import pandas as pd
import plotly
from dash import Dash, Input, Output, dcc, html

from seqplore.analysis.enrichment import (
    best_celltypes,
    cluster_overlaps,
    marker_enrichment,
)
from seqplore.analysis.plots import EMPTY_FIGURE, mixed_sort_key
from seqplore.analysis.reference import (
    classify,
    load_reference,
    train_reference,
)
from seqplore.analysis.singlecell import (
    cluster_average_expression,
    embedding_frame,
    expression_frame,
    find_markers,
    markers_by_group,
    umap_plot_from_data,
)
from seqplore.dtypes import input_args_id, load_markers, normalize_species
from seqplore.utils import SEQPLORE_TMP_DIR, ensure_directory_exists
from seqplore.utils.varia import get_free_port

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = Path(SEQPLORE_TMP_DIR, "annotation")
REFERENCE_LABEL = "reference_label"
REFERENCE_PRUNED_LABEL = "reference_pruned_label"
OVERLAP_LABEL = "overlap_label"
ENRICHMENT_LABEL = "enrichment_label"
N_TABLE_ROWS = 10
VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def get_navbar():
    """Returns a navigation bar with the title."""
    title = dbc.NavbarBrand("Cluster Annotation", className="ms-2")
    return dbc.Navbar(
        dbc.Container([title]),
        color="dark",
        dark=True,
    )


def _table(df, n_rows=N_TABLE_ROWS):
    if df is None or df.empty:
        return html.P("No results.")
    if n_rows is not None:
        df = df.head(n_rows)
    df = df.copy()
    for column in df.select_dtypes("float").columns:
        df[column] = df[column].map(lambda x: f"{x:.3g}")
    return dbc.Table.from_dataframe(
        df, striped=True, bordered=False, hover=True, size="sm"
    )


class ClusterAnnotation:
    """Cell type annotation of the clusters of a single-cell data set.

    Args:
        adata (AnnData): Log-normalized data with clusters in
            `adata.obs[groupby]` and (for plots) a UMAP embedding, as
            returned by `seqplore.analysis.singlecell.cluster`.
        groupby (str): Cluster column in `adata.obs`. Defaults to 'leiden'.
        output_dir (path_like): Directory for result tables.
        species (str): Species of the data ('hs' or 'mm').
        host (str): Host of the Dash application.
        port (int): Port of the Dash application (next free port is used).
        debug (bool): Dash debug mode.
        verbose (int): Logging verbosity, 0 (warnings), 1 (info) or 2
            (debug).

    Attributes:
        markers (pd.DataFrame): Marker genes per cluster.
        reference (ReferenceAnnotation): Reference-based labels.
        overlaps (pd.DataFrame): Marker database overlaps per cluster.
        enrichment (pd.DataFrame): Marker database enrichment per cluster.

    Examples:
        >>> annotation = ClusterAnnotation(adata, species="hs")
        >>> annotation.find_markers()
        >>> annotation.annotate_reference()
        >>> annotation.annotate_overlaps()
        >>> annotation.summary()
    """

    def __init__(
        self,
        adata,
        groupby="leiden",
        output_dir=DEFAULT_OUTPUT_DIR,
        species="hs",
        host="localhost",
        port=8050,
        debug=False,
        verbose=1,
    ):
        if groupby not in adata.obs:
            msg = f"Column '{groupby}' not found in adata.obs"
            raise KeyError(msg)
        self.adata = adata
        self.groupby = groupby
        self.output_dir = Path(output_dir).expanduser()
        self.species = normalize_species(species)
        self.host = host
        self.port = port
        self.debug = debug
        self.markers = None
        self.reference = None
        self.overlaps = None
        self.enrichment = None
        self.app = None
        self._average_expression = None

        # Set logging level dynamically
        main_logger = logging.getLogger("seqplore")
        main_logger.setLevel(VERBOSITY_LEVELS.get(verbose, logging.INFO))
        for handler in main_logger.handlers:
            handler.setLevel(VERBOSITY_LEVELS.get(verbose, logging.INFO))

    @property
    def clusters(self):
        """Cluster label of every cell."""
        return self.adata.obs[self.groupby].astype(str)

    @property
    def average_expression(self):
        """Mean log-expression per cluster (genes x clusters)."""
        if self._average_expression is None:
            self._average_expression = cluster_average_expression(
                self.adata, groupby=self.groupby
            )
        return self._average_expression

    def _set_cluster_labels(self, column, labels):
        """Maps cluster labels onto the cells."""
        self.adata.obs[column] = (
            self.clusters.map(labels).fillna("NA").astype("category")
        )

    def find_markers(self, **kwargs):
        """Marker genes of every cluster, see `singlecell.find_markers`."""
        self.markers = find_markers(self.adata, groupby=self.groupby, **kwargs)
        return self.markers

    def annotate_reference(
        self, ref=None, labels=None, *, by_cluster=True, **kwargs
    ):
        """Labels clusters (or cells) with a labeled reference.

        Args:
            ref (ExpressionMatrix or pd.DataFrame, optional): Reference
                log-expression. Defaults to `reference.load_reference()`.
            labels (array_like, optional): Labels of the reference samples.
            by_cluster (bool): Label clusters instead of single cells.
            **kwargs: Passed to `reference.classify`.

        The assigned labels are written to `adata.obs["reference_label"]`
        and the labels after pruning (NA if pruned) to
        `adata.obs["reference_pruned_label"]`, in both modes.

        Returns:
            ReferenceAnnotation: The result, also stored in `reference`.
        """
        if ref is None:
            ref, labels = load_reference()
        model = train_reference(ref, labels)
        test = expression_frame(self.adata)
        clusters = self.clusters if by_cluster else None
        self.reference = classify(test, model, clusters=clusters, **kwargs)
        columns = {
            REFERENCE_LABEL: self.reference.labels,
            REFERENCE_PRUNED_LABEL: self.reference.pruned_labels,
        }
        for column, values in columns.items():
            if by_cluster:
                self._set_cluster_labels(column, values)
            else:
                self.adata.obs[column] = (
                    values.reindex(self.adata.obs_names)
                    .fillna("NA")
                    .astype("category")
                )
        return self.reference

    def annotate_overlaps(self, markers=None, n_genes=25):
        """Overlaps of the cluster marker genes with marker databases.

        Args:
            markers (MarkerSets, optional): Defaults to `load_markers` for
                the species.
            n_genes (int): Number of top marker genes per cluster.
        """
        if markers is None:
            markers = load_markers(species=self.species)
        if self.markers is None:
            self.find_markers()
        groups = markers_by_group(self.markers, n=n_genes)
        self.overlaps = cluster_overlaps(
            groups, markers, species=self.species
        )
        self._set_cluster_labels(
            OVERLAP_LABEL,
            best_celltypes(self.overlaps, "group", "p_value"),
        )
        return self.overlaps

    def annotate_enrichment(self, markers=None, method="singscore"):
        """Enrichment of marker gene sets in the cluster averages."""
        if markers is None:
            markers = load_markers(species=self.species)
        self.enrichment = marker_enrichment(
            self.average_expression,
            markers,
            species=self.species,
            method=method,
        )
        self._set_cluster_labels(
            ENRICHMENT_LABEL,
            best_celltypes(self.enrichment, "sample", "score_rank"),
        )
        return self.enrichment

    def summary(self):
        """One row per cluster with its size and the best labels."""
        summary = self.clusters.value_counts().rename("n_cells").to_frame()
        summary.index.name = "cluster"
        if self.reference is not None:
            labels = self.adata.obs[REFERENCE_LABEL].astype(str)
            summary[REFERENCE_LABEL] = labels.groupby(self.clusters).agg(
                lambda x: x.value_counts().index[0]
            )
            pruned = self.adata.obs[REFERENCE_PRUNED_LABEL].astype(str) == "NA"
            summary["reference_pruned"] = pruned.groupby(self.clusters).mean()
        if self.overlaps is not None:
            best = self.overlaps.sort_values("p_value", kind="stable")
            best = best.drop_duplicates("group").set_index("group")
            summary[OVERLAP_LABEL] = best["celltype"]
            summary["overlap_fdr"] = best["fdr"]
        if self.enrichment is not None:
            summary[ENRICHMENT_LABEL] = best_celltypes(
                self.enrichment, "sample", "score_rank"
            )
        order = sorted(summary.index, key=mixed_sort_key)
        return summary.loc[order]

    def save(self):
        """Writes all available result tables as csv files.

        Returns:
            dict: Table name to file path.
        """
        ensure_directory_exists(self.output_dir)
        tables = {
            "markers": self.markers,
            "reference": (
                self.reference.to_frame()
                if self.reference is not None
                else None
            ),
            "overlaps": self.overlaps,
            "enrichment": self.enrichment,
            "summary": self.summary(),
        }
        paths = {}
        for name, table in tables.items():
            if table is None:
                continue
            file_id = input_args_id(
                name,
                self.groupby,
                self.species,
                extra_hash=list(self.adata.obs_names),
            )
            path = self.output_dir / f"{file_id}.csv"
            table.to_csv(path)
            paths[name] = path
            logger.info("Saved %s to %s", name, path)
        return paths

    def umap_plot(self, color=None):
        """UMAP of the cells colored by a cell annotation or gene."""
        color = color or self.groupby
        embedding_df = embedding_frame(self.adata, color)
        return umap_plot_from_data(embedding_df, color=color)

    def _color_options(self):
        obs = self.adata.obs
        return [
            column
            for column in obs.columns
            if isinstance(obs[column].dtype, pd.CategoricalDtype)
            or obs[column].dtype == object
        ]

    def _cluster_tables(self, cluster):
        children = []
        if self.markers is not None:
            markers = self.markers[self.markers["group"] == cluster]
            children += [html.H5("Marker genes"), _table(markers)]
        scores = None if self.reference is None else self.reference.scores
        if scores is not None and cluster in scores.index:
            scores = (
                self.reference.scores.loc[cluster]
                .sort_values(ascending=False)
                .rename("score")
                .rename_axis("label")
                .reset_index()
            )
            children += [html.H5("Reference scores"), _table(scores)]
        if self.overlaps is not None:
            overlaps = self.overlaps[self.overlaps["group"] == cluster]
            columns = ["celltype", "organ", "db", "overlap", "p_value", "fdr"]
            children += [html.H5("Overlaps"), _table(overlaps[columns])]
        if self.enrichment is not None:
            enrichment = self.enrichment[self.enrichment["sample"] == cluster]
            columns = [
                x
                for x in enrichment.columns
                if x in ("celltype", "organ", "db", "score_rank")
                or x.startswith("score_")
            ]
            children += [html.H5("Enrichment"), _table(enrichment[columns])]
        return children

    def get_app(self):
        """Returns a Dash application object for browsing the annotation."""
        app = Dash(
            __name__,
            update_title=None,
            external_stylesheets=[dbc.themes.BOOTSTRAP],
        )
        app.title = "seqplore"
        color_options = self._color_options()
        cluster_ids = sorted(self.clusters.unique(), key=mixed_sort_key)
        has_umap = "X_umap" in self.adata.obsm
        side_navigation = dbc.Col(
            [
                html.H6("Color by"),
                dcc.Dropdown(
                    id="umap-color",
                    options=color_options,
                    value=self.groupby,
                    clearable=False,
                ),
                html.Br(),
                html.H6("Cluster"),
                dcc.Dropdown(
                    id="cluster-select",
                    options=cluster_ids,
                    value=cluster_ids[0] if cluster_ids else None,
                    clearable=False,
                ),
                html.Br(),
                html.H6("Summary"),
                _table(self.summary().reset_index(), n_rows=None),
            ],
            width={"size": 4},
        )
        main_panel = dbc.Col(
            [
                dcc.Graph(
                    id="umap-plot",
                    figure=(
                        self.umap_plot() if has_umap else EMPTY_FIGURE
                    ),
                    config={
                        "scrollZoom": True,
                        "doubleClick": "autosize",
                        "displaylogo": False,
                    },
                    style={"height": "60vh"},
                ),
                html.Div(id="cluster-tables"),
            ],
            width={"size": 8},
        )
        app.layout = html.Div(
            [
                get_navbar(),
                dbc.Container(
                    [
                        dbc.Row(
                            [side_navigation, main_panel],
                            style={"margin-top": "20px"},
                        ),
                    ],
                    fluid=True,
                ),
            ],
        )

        @app.callback(
            Output("umap-plot", "figure"),
            Input("umap-color", "value"),
            prevent_initial_call=True,
        )
        def update_umap_plot(color):
            if not has_umap:
                return EMPTY_FIGURE
            return self.umap_plot(color)

        @app.callback(
            Output("cluster-tables", "children"),
            Input("cluster-select", "value"),
        )
        def update_cluster_tables(cluster):
            if cluster is None:
                return []
            return self._cluster_tables(str(cluster))

        return app

    def run_app(self, *, open_tab=False):
        """Runs the Dash application.

        Args:
            open_tab (bool, optional): Whether to automatically open a new
                browser tab with the application URL. Defaults to False.
        """
        self.app = self.get_app()
        free_port = get_free_port(self.port)
        if open_tab:

            def open_browser_tab():
                webbrowser.open_new_tab(f"http://{self.host}:{free_port}")

            threading.Timer(1, open_browser_tab).start()

        self.app.run(
            debug=self.debug,
            host=self.host,
            use_reloader=False,
            port=free_port,
        )

    def __repr__(self):
        title = f"{self.__class__.__name__}()"
        header = title + "\n" + "*" * len(title)
        lines = [header]

        def format_value(value):
            if isinstance(value, (pd.DataFrame, pd.Series, np.ndarray)):
                return str(value)
            if isinstance(value, plotly.graph_objs.Figure):
                return "Figure(...)"
            display_value = str(value)
            if len(display_value) > 80:
                display_value = display_value[:80] + "..."
            return display_value

        for attr, value in sorted(self.__dict__.items()):
            if attr.startswith("_"):
                continue
            lines.append(f"{attr}:\n{format_value(value)}")
        return "\n\n".join(lines)
