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
# Cell Type Annotation with Marker Databases
# ==========================================
#
# Clusters are annotated with the curated marker gene sets of PanglaoDB and
# CellMarker in two ways:
#
# - **Overlaps**: the marker genes of each cluster are tested against every
#   cell type gene set (hypergeometric test).
# - **Enrichment**: every gene set is scored in the average expression of
#   every cluster (singscore and ssGSEA) and the cell types are ranked.
#
# The results are combined with a reference-based annotation in the
# `ClusterAnnotation` browser.
#
# This notebook was automatically generated from the corresponding py-file
# with:
#
# ```bash
# jupytext --to ipynb marker_annotation.py
# ```

# %% [markdown]
# -----------------------------------------------------------------------------
# ### Install Required Packages

# %% language="bash"
#
# pip install -q seqplore


# %% [markdown]
# ### Marker Databases
#
# The databases are downloaded on first use to `~/seqplore/data`.

# %%
from seqplore.dtypes import load_markers

markers = load_markers(sources=["panglaodb", "cellmarker"], species="hs")
print(markers)
markers.summary()

# %% [markdown]
# ### Overlap of a Gene List

# %%
from seqplore.analysis.enrichment import marker_overlaps

genes = ["CD3E", "CD3D", "CD2", "IL7R", "LCK", "CD5", "TRAC"]
marker_overlaps(genes, markers, species="hs").head(10)

# %% [markdown]
# ### Cluster a Single-Cell Data Set

# %%
import scanpy as sc

from seqplore.analysis.singlecell import cluster, preprocess, qc_filter

adata = cluster(preprocess(qc_filter(sc.datasets.pbmc3k())))

# %% [markdown]
# ### Annotate the Clusters

# %%
from seqplore.analysis.annotation import ClusterAnnotation

annotation = ClusterAnnotation(adata, species="hs")
annotation.find_markers()
annotation.annotate_reference()
annotation.annotate_overlaps(markers)
annotation.annotate_enrichment(markers, method="all")
annotation.summary()

# %%
annotation.umap_plot("overlap_label").show()

# %%
annotation.save()

# %% [markdown]
# ### Graphical User Interface

# %%
annotation.run_app(open_tab=True)
