# ---
# jupyter:
#   jupytext:
#     formats: ipynb,py:percent
#     text_representation:
#       extension: .py
#       format_name: percent
#       format_version: '1.3'
#       jupytext_version: 1.16.4
#   kernelspec:
#     display_name: Python 3 (ipykernel)
#     language: python
#     name: python3
# ---

# %% [markdown]
#
# Reference-Based Cell Type Annotation
# ====================================
#
# Single cells (or clusters) are labeled by correlating them with a labeled
# reference. Here the processed PBMC 3k data set serves as reference and a
# second, independently processed PBMC data set is annotated.
#
# This notebook was automatically generated from the corresponding py-file
# with:
#
# ```bash
# jupytext --to ipynb reference_annotation.py
# ```

# %% [markdown]
# -----------------------------------------------------------------------------
# ### Install Required Packages

# %% language="bash"
#
# pip install -q seqplore


# %% [markdown]
# ### Process the Query Data Set

# %%
from pathlib import Path

import scanpy as sc

from seqplore.analysis.singlecell import cluster, preprocess, qc_filter

adata = sc.datasets.pbmc3k()
adata = cluster(preprocess(qc_filter(adata)), resolution=0.8)
adata

# %% [markdown]
# ### Load and Train the Reference
#
# The reference labels are the Louvain clusters annotated in the scanpy
# tutorial.

# %%
from seqplore.analysis.reference import load_reference, train_reference

ref, labels = load_reference("pbmc3k_processed", label_column="louvain")
model = train_reference(ref, labels)
print(model)

# %% [markdown]
# ### Classify Clusters

# %%
from seqplore.analysis.reference import classify
from seqplore.analysis.singlecell import expression_frame

test = expression_frame(adata)
by_cluster = classify(test, model, clusters=adata.obs["leiden"])
by_cluster.to_frame()

# %%
from seqplore.analysis.reference import score_heatmap

score_heatmap(by_cluster, title="Cluster scores").show()

# %% [markdown]
# ### Classify Single Cells
#
# Labels with a low confidence are pruned (set to NaN).

# %%
by_cell = classify(test, model)
adata.obs["reference_label"] = by_cell.pruned_labels.reindex(
    adata.obs_names
).fillna("NA")
adata.obs["reference_label"].value_counts()

# %%
from seqplore.analysis.reference import make_report_page, make_reports

DIR = Path.home() / "seqplore" / "tutorial"
DIR.mkdir(parents=True, exist_ok=True)

reports = make_reports(
    by_cluster, info=model.info("html"), output_format="html"
)
html = make_report_page(reports, title="PBMC clusters")
(DIR / "clusters.html").write_text(html)
