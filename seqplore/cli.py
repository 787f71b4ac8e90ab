"""Command-line interface for seqplore.

Usage:
    $ seqplore download ca_genes_fpkm ca_genes_stats    # Tutorial data
    $ seqplore heatmap fpkm.csv stats.csv -o heatmap.html
    $ seqplore overlaps CD3E,CD3D,CD2,IL7R,LCK          # Marker overlaps
    $ seqplore annotate filtered_feature_bc_matrix.h5   # Full workflow
    $ seqplore --help                                   # Show all commands

"""

import argparse
import re
import sys
import textwrap
from pathlib import Path

from seqplore.utils.varia import SEQPLORE_DATA_DIR, get_app_version


def print_welcome_message():
    """Prints a short welcome message."""
    app_version = get_app_version()
    welcome_message = rf"""
  ___  ___  __ _ _ __ | | ___  _ __ ___
 / __|/ _ \/ _` | '_ \| |/ _ \| '__/ _ \
 \__ \  __/ (_| | |_) | | (_) | | |  __/
 |___/\___|\__, | .__/|_|\___/|_|  \___|
              |_|_|

Version: {app_version}
"""
    print(welcome_message)


def absolute_path(path):
    """Converts a relative path to an absolute path."""
    return Path(path).expanduser().absolute()


class SmartFormatter(argparse.ArgumentDefaultsHelpFormatter):
    """Keeps new lines and doesn't break words, but still wraps lines.

    Source: https://gist.github.com/panzi/b4a51b3968f67b9ff4c99459fb9c5b3d
    """

    def _split_lines(self, text, width):
        lines = []
        for line in textwrap.dedent(text).strip().split("\n"):
            ident = re.match(r"^\s*", line).group(0)
            curr_line = [ident] if ident else []
            curr_len = len(ident)
            for word in line.split():
                if curr_line and curr_len + len(word) + 1 > width:
                    lines.append(" ".join(curr_line))
                    curr_line = [ident] if ident else []
                    curr_len = len(ident)
                curr_line.append(word)
                curr_len += len(word) + (1 if curr_line else 0)
            lines.append(" ".join(curr_line))
        return lines

    def _fill_text(self, text, width, indent):
        return "\n".join(
            indent + line
            for line in self._split_lines(text, width - len(indent))
        )


def read_gene_list(value):
    """Genes from a comma separated string or a file (one gene per line)."""
    path = Path(value).expanduser()
    try:
        is_file = path.is_file()
    except OSError:
        # Long gene lists exceed the maximal file name length.
        is_file = False
    text = path.read_text() if is_file else value
    return [x for x in re.split(r"[,\s]+", text) if x]


def _add_species(parser):
    parser.add_argument(
        "--species",
        type=str,
        default="hs",
        help="Species of the data: 'hs' (human) or 'mm' (mouse).",
    )


def _add_sources(parser):
    parser.add_argument(
        "--sources",
        nargs="+",
        default=None,
        help=(
            "Marker databases: 'panglaodb', 'cellmarker' or paths to GMT "
            "files. Defaults to the configured databases."
        ),
    )


def _add_output(parser, default, help_text):
    parser.add_argument(
        "-o",
        "--output",
        type=absolute_path,
        default=default,
        help=help_text,
    )


def get_parser():
    """Returns the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="seqplore",
        description=(
            """
            seqplore: RNA-seq exploration toolkit
            -------------------------------------

            Expression heatmaps from FPKM tables and cell type annotation of single-cell clusters with labeled references or marker gene databases (PanglaoDB, CellMarker).
            """
        ),
        epilog=(
            """
            Example usage:
            --------------

            1. Download the heatmap tutorial data and plot the top genes:

                seqplore download ca_genes_fpkm ca_genes_stats
                seqplore heatmap ~/seqplore/data/ca_genes_fpkm/*.csv \\
                    ~/seqplore/data/ca_genes_stats/*.csv -o heatmap.html

            2. Annotate the clusters of a 10x data set and open the browser:

                seqplore annotate filtered_feature_bc_matrix.h5 --app
            """
        ),
        formatter_class=SmartFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{get_app_version()}",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    download = subparsers.add_parser(
        "download",
        help="Download tutorial datasets or GEO supplementary files.",
        formatter_class=SmartFormatter,
    )
    download.add_argument(
        "names",
        nargs="*",
        help="Names of configured datasets (see --list).",
    )
    download.add_argument(
        "--list",
        action="store_true",
        help="List the configured datasets and exit.",
    )
    download.add_argument(
        "--geo",
        type=str,
        help="GEO accession (GSE/GSM) whose supplementary files are fetched.",
    )
    download.add_argument(
        "--pattern",
        type=str,
        default=None,
        help="Regular expression selecting GEO supplementary files.",
    )
    download.add_argument(
        "-d",
        "--save_dir",
        type=absolute_path,
        default=SEQPLORE_DATA_DIR,
        help="Download directory.",
    )
    download.add_argument(
        "--overwrite",
        action="store_true",
        help="Download files even if they exist.",
    )

    heatmap = subparsers.add_parser(
        "heatmap",
        help="Heatmap of the most significant genes of an FPKM table.",
        formatter_class=SmartFormatter,
    )
    heatmap.add_argument("fpkm", type=absolute_path, help="FPKM table.")
    heatmap.add_argument(
        "stats", type=absolute_path, help="Differential statistics table."
    )
    heatmap.add_argument(
        "-n", "--n_genes", type=int, default=50, help="Number of genes."
    )
    heatmap.add_argument(
        "-q", "--q_max", type=float, default=0.05, help="q-value threshold."
    )
    heatmap.add_argument(
        "--scale",
        choices=["row", "column", "none"],
        default="row",
        help="Scaling of the values before clustering and plotting.",
    )
    heatmap.add_argument(
        "--pattern",
        type=str,
        default=None,
        help=(
            "Regular expression whose first group extracts the sample group "
            "from the sample name. By default trailing replicate numbers are "
            "removed."
        ),
    )
    _add_output(heatmap, Path("heatmap.html"), "Output html or image file.")

    overlaps = subparsers.add_parser(
        "overlaps",
        help="Overlap of a gene list with marker gene databases.",
        formatter_class=SmartFormatter,
    )
    overlaps.add_argument(
        "genes",
        type=read_gene_list,
        help="Comma separated genes or a file with one gene per line.",
    )
    _add_species(overlaps)
    _add_sources(overlaps)
    overlaps.add_argument(
        "-n", "--n_top", type=int, default=20, help="Rows printed."
    )
    _add_output(overlaps, None, "Optional csv file with all results.")

    enrichment = subparsers.add_parser(
        "enrichment",
        help="Enrichment of marker gene sets in expression profiles.",
        formatter_class=SmartFormatter,
    )
    enrichment.add_argument(
        "expression",
        type=absolute_path,
        help="Expression table (genes x samples or clusters).",
    )
    enrichment.add_argument(
        "--method",
        choices=["singscore", "ssgsea", "all"],
        default="singscore",
        help="Scoring method.",
    )
    _add_species(enrichment)
    _add_sources(enrichment)
    enrichment.add_argument(
        "-n", "--n_top", type=int, default=3, help="Cell types per sample."
    )
    _add_output(enrichment, None, "Optional csv file with all results.")

    annotate = subparsers.add_parser(
        "annotate",
        help="Cluster a single-cell data set and annotate the clusters.",
        formatter_class=SmartFormatter,
    )
    annotate.add_argument(
        "counts",
        type=absolute_path,
        help="Count matrix (h5ad, 10x h5, 10x mtx directory or table).",
    )
    annotate.add_argument(
        "--resolution", type=float, default=0.8, help="Leiden resolution."
    )
    annotate.add_argument(
        "--reference",
        type=str,
        default=None,
        help=(
            "Labeled reference: 'pbmc3k_processed' or an h5ad file. Defaults "
            "to the configured reference."
        ),
    )
    annotate.add_argument(
        "--label_column",
        type=str,
        default=None,
        help="Label column of the reference.",
    )
    annotate.add_argument(
        "--no_reference",
        action="store_true",
        help="Skip the reference-based annotation.",
    )
    annotate.add_argument(
        "--method",
        choices=["singscore", "ssgsea", "all"],
        default="singscore",
        help="Enrichment method.",
    )
    _add_species(annotate)
    _add_sources(annotate)
    _add_output(annotate, None, "Output directory for the result tables.")
    annotate.add_argument(
        "--app",
        action="store_true",
        help="Open the results in the browser application.",
    )
    annotate.add_argument(
        "-H", "--host", type=str, default="localhost", help="Dash host."
    )
    annotate.add_argument(
        "-P", "--port", type=int, default=8050, help="Dash port."
    )

    markers = subparsers.add_parser(
        "markers",
        help="Summary of the marker gene databases.",
        formatter_class=SmartFormatter,
    )
    _add_species(markers)
    _add_sources(markers)
    markers.add_argument(
        "--organ", type=str, default=None, help="Only this organ."
    )
    _add_output(markers, None, "Optional csv file with the marker table.")

    return parser


def parse_args(argv=None):
    """Parses command line arguments."""
    return get_parser().parse_args(argv)


def run_download(args):
    from seqplore.utils import (
        dataset_names,
        download_dataset,
        download_geo_supplementary,
    )

    if args.list:
        print("\n".join(dataset_names()))
        return
    for name in args.names:
        path = download_dataset(name, args.save_dir, overwrite=args.overwrite)
        print(path)
    if args.geo:
        paths = download_geo_supplementary(
            args.geo, args.save_dir, pattern=args.pattern
        )
        print("\n".join(map(str, paths)))


def run_heatmap(args):
    from seqplore.analysis.heatmap import fpkm_heatmap, save_figure
    from seqplore.dtypes import ExpressionMatrix, GeneStats

    figure = fpkm_heatmap(
        ExpressionMatrix.from_file(args.fpkm),
        GeneStats.from_file(args.stats),
        n_genes=args.n_genes,
        q_max=args.q_max,
        sample_pattern=args.pattern,
        scale=args.scale,
    )
    print(save_figure(figure, args.output))


def run_overlaps(args):
    from seqplore.analysis.enrichment import marker_overlaps
    from seqplore.dtypes import load_markers

    markers = load_markers(sources=args.sources, species=args.species)
    result = marker_overlaps(args.genes, markers, species=args.species)
    columns = ["celltype", "organ", "db", "overlap", "p_value", "fdr"]
    print(result[columns].head(args.n_top).to_string())
    if args.output:
        result.to_csv(args.output, index=False)


def run_enrichment(args):
    from seqplore.analysis.enrichment import marker_enrichment, top_celltypes
    from seqplore.dtypes import ExpressionMatrix, load_markers

    markers = load_markers(sources=args.sources, species=args.species)
    result = marker_enrichment(
        ExpressionMatrix.from_file(args.expression),
        markers,
        species=args.species,
        method=args.method,
    )
    print(top_celltypes(result, n=args.n_top).to_string())
    if args.output:
        result.to_csv(args.output, index=False)


def run_annotate(args):
    from seqplore.analysis.annotation import (
        DEFAULT_OUTPUT_DIR,
        ClusterAnnotation,
    )
    from seqplore.analysis.reference import load_reference
    from seqplore.analysis.singlecell import (
        cluster,
        preprocess,
        qc_filter,
        read_counts,
    )
    from seqplore.dtypes import load_markers

    adata = read_counts(args.counts)
    adata = cluster(
        preprocess(qc_filter(adata, mt_prefix=_mt_prefix(args.species))),
        resolution=args.resolution,
    )
    annotation = ClusterAnnotation(
        adata,
        output_dir=args.output or DEFAULT_OUTPUT_DIR,
        species=args.species,
        host=args.host,
        port=args.port,
    )
    annotation.find_markers()
    if not args.no_reference:
        ref, labels = load_reference(args.reference, args.label_column)
        annotation.annotate_reference(ref, labels)
    markers = load_markers(sources=args.sources, species=args.species)
    annotation.annotate_overlaps(markers)
    annotation.annotate_enrichment(markers, method=args.method)
    print(annotation.summary().to_string())
    annotation.save()
    if args.app:
        annotation.run_app(open_tab=True)


def _mt_prefix(species):
    return "mt-" if species.lower() in ("mm", "mouse") else "MT-"


def run_markers(args):
    from seqplore.dtypes import load_markers

    markers = load_markers(sources=args.sources, species=args.species)
    if args.organ:
        markers = markers.filter(organ=args.organ)
    print(markers)
    print(markers.summary().to_string())
    if args.output:
        markers.df.to_csv(args.output, index=False)


COMMANDS = {
    "download": run_download,
    "heatmap": run_heatmap,
    "overlaps": run_overlaps,
    "enrichment": run_enrichment,
    "annotate": run_annotate,
    "markers": run_markers,
}


def main(argv=None):
    """Entry point of the seqplore command line interface."""
    args = parse_args(argv)
    print_welcome_message()
    COMMANDS[args.command](args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
