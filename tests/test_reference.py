"""Pytest for reference-based cell type annotation."""

import numpy as np
import pandas as pd
import pytest

from seqplore.analysis.reference import (
    ReferenceAnnotation,
    aggregate_reference,
    annotate_with_reference,
    classify,
    default_de_n,
    fine_tune_labels,
    make_report_page,
    make_reports,
    prune_scores,
    score_cells,
    score_heatmap,
    select_marker_genes,
    train_reference,
)
from seqplore.dtypes import ExpressionMatrix
from seqplore.tests.helpers import CELL_TYPES, make_expression


def test_default_de_n() -> None:
    assert default_de_n(2) == 333
    assert default_de_n(4) == 222
    assert default_de_n(8) == 148


def test_select_marker_genes() -> None:
    """The planted markers separate every pair of labels."""
    ref, labels = make_expression(n_per_type=3, seed=1)
    markers = select_marker_genes(ref, labels, de_n=6)
    assert set(markers) == set(CELL_TYPES)
    for label_a, others in markers.items():
        assert label_a not in others
        for genes in others.values():
            assert sorted(genes) == sorted(CELL_TYPES[label_a])


def test_train_reference() -> None:
    ref, labels = make_expression(n_per_type=3, seed=1)
    model = train_reference(ExpressionMatrix(ref, is_log=True), labels)
    assert model.de_n == 222
    assert model.classes() == sorted(CELL_TYPES)
    assert set(CELL_TYPES["B cells"]) <= set(model.genes)
    assert "Marker genes" in model.info()
    assert model.info("html").startswith("<h2>Reference</h2>")

    aggregated = train_reference(ref, labels, de_n=6, aggregate=True)
    assert aggregated.ref.shape[1] == 4
    assert list(aggregated.labels) == sorted(CELL_TYPES)

    with pytest.raises(ValueError):
        train_reference(ref, labels[:-1])
    with pytest.raises(ValueError):
        train_reference(ref, ["same"] * ref.shape[1])


def test_aggregate_reference() -> None:
    ref = pd.DataFrame(
        {"a": [1.0, 2.0], "b": [3.0, 4.0], "c": [5.0, 6.0]},
        index=["g1", "g2"],
    )
    mean = aggregate_reference(ref, ["x", "x", "y"])
    assert mean.loc["g1", "x"] == 2.0
    assert mean.loc["g2", "y"] == 6.0


def test_score_cells() -> None:
    """Cells correlate best with the reference of their own type."""
    ref, labels = make_expression(n_per_type=4, seed=1)
    test, truth = make_expression(n_per_type=2, seed=2)
    model = train_reference(ref, labels, de_n=10)
    scores = score_cells(test, model)
    assert scores.shape == (len(truth), 4)
    assert scores.index.name == "cell"
    assert (scores.idxmax(axis=1) == truth).all()
    assert ((scores >= -1) & (scores <= 1)).all().all()
    with pytest.raises(ValueError):
        score_cells(test, model, genes=[])


def test_fine_tune_labels() -> None:
    ref, labels = make_expression(n_per_type=4, seed=1)
    test, truth = make_expression(n_per_type=2, seed=4)
    model = train_reference(ref, labels)
    scores = score_cells(test, model)

    tuned = fine_tune_labels(test, model, scores, tune_thresh=1.0)
    assert list(tuned.columns) == ["label", "delta_next"]
    assert list(tuned.index) == list(scores.index)
    assert (tuned["label"] == truth.to_numpy()).all()
    assert (tuned["delta_next"] >= 0).all()


def test_classify() -> None:
    ref, labels = make_expression(n_per_type=4, seed=1)
    test, truth = make_expression(n_per_type=3, seed=2)
    model = train_reference(ref, labels)
    annotation = classify(test, model)

    assert isinstance(annotation, ReferenceAnnotation)
    assert (annotation.labels == truth).all()
    assert (annotation.first_labels == truth).all()
    assert (annotation.delta_next > 0).all()
    frame = annotation.to_frame()
    assert list(frame.columns) == [
        "first_label",
        "label",
        "pruned_label",
        "delta_next",
        "max_score",
    ]

    plain = classify(test, model, fine_tune=False, prune=False)
    assert (plain.labels == truth).all()
    assert plain.pruned_labels.notna().all()


def test_classify_ambiguous_cell_is_pruned() -> None:
    """A cell expressing the markers of two types gets a low confidence."""
    ref, labels = make_expression(n_per_type=4, seed=1)
    test, truth = make_expression(
        n_per_type=6, seed=3, mixed=[("B cells", "T cells")]
    )
    annotation = annotate_with_reference(test, ref, labels)
    mixed = "mixed_B_T"
    assert annotation.labels[mixed] in ("B cells", "T cells")
    assert pd.isna(annotation.pruned_labels[mixed])
    clean = truth.index != mixed
    assert (annotation.labels[clean] == truth[clean]).all()


def test_classify_clusters() -> None:
    """Clusters are labeled from their average profile."""
    ref, labels = make_expression(n_per_type=4, seed=1)
    test, truth = make_expression(n_per_type=3, seed=2)
    clusters = truth.map(
        {"B cells": "0", "T cells": "1", "NK cells": "2", "Monocytes": "3"}
    )
    model = train_reference(ref, labels)
    annotation = classify(test, model, clusters=clusters)
    assert list(annotation.scores.index) == ["0", "1", "2", "3"]
    assert annotation.labels.to_dict() == {
        "0": "B cells",
        "1": "T cells",
        "2": "NK cells",
        "3": "Monocytes",
    }


def test_classify_without_common_genes() -> None:
    ref, labels = make_expression(n_per_type=2, seed=1)
    test = pd.DataFrame({"cell": [1.0, 2.0]}, index=["X1", "X2"])
    with pytest.raises(ValueError):
        classify(test, train_reference(ref, labels))


def test_prune_scores() -> None:
    scores = pd.DataFrame(
        {
            "A": [0.9, 0.91, 0.89, 0.9, 0.5],
            "B": [0.1, 0.12, 0.1, 0.11, 0.45],
            "C": [0.2, 0.19, 0.21, 0.2, 0.1],
        },
        index=["c1", "c2", "c3", "c4", "c5"],
    )
    pruned = prune_scores(scores, ["A"] * 5)
    assert pruned.tolist() == [False, False, False, False, True]
    assert prune_scores(scores, ["A"] * 5, min_diff_med=0.75).sum() == 5


def test_reports_and_heatmap() -> None:
    ref, labels = make_expression(n_per_type=3, seed=1)
    test, _ = make_expression(n_per_type=2, seed=2)
    model = train_reference(ref, labels)
    annotation = classify(test, model)

    reports = make_reports(annotation, info=model.info(), n_top=3)
    assert len(reports) == test.shape[1]
    assert reports[0].startswith("B_0\n===")
    assert "Label: B cells" in reports[0]
    html_reports = make_reports(annotation, output_format="html")
    page = make_report_page(html_reports, title="Cells")
    assert page.startswith("<!DOCTYPE html>")
    assert "<h1>Cells</h1>" in page
    with pytest.raises(ValueError):
        make_reports(annotation, output_format="pdf")

    figure = score_heatmap(annotation)
    main = figure.data[0]
    assert np.asarray(main.z).shape == (4, test.shape[1])
    assert np.nanmax(np.asarray(main.z)) == pytest.approx(1)
