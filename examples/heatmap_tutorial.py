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
# Expression Heatmaps
# ===================
#
# This notebook plots the most significant genes of a differential expression
# analysis as a clustered heatmap: genes are selected from the statistics
# table, their FPKM values are log2-transformed and z-scored per gene, and
# rows and columns are ordered by hierarchical clustering.
#
# This notebook was automatically generated from the corresponding py-file
# with:
#
# ```bash
# jupytext --to ipynb heatmap_tutorial.py
# ```

# %% [markdown]
# -----------------------------------------------------------------------------
# ### Install Required Packages
#
# To run the tutorial, install `seqplore`:

# %% language="bash"
#
# pip install -q seqplore


# %% [markdown]
# ### Download the Data
#
# An FPKM table (genes x samples) and the statistics of a differential test
# between two groups of samples.

# %%
from pathlib import Path

from seqplore.dtypes import ExpressionMatrix, GeneStats
from seqplore.utils import setup_tutorial_files

DIR = Path.home() / "seqplore" / "tutorial"

paths = setup_tutorial_files(DIR)
fpkm = ExpressionMatrix.from_file(paths["ca_genes_fpkm"])
stats = GeneStats.from_file(paths["ca_genes_stats"])
print(fpkm)
print(stats)

# %% [markdown]
# ### Significant Genes

# %%
significant = stats.significant(q_max=0.05)
significant.top(10).df

# %% [markdown]
# ### Heatmap of the Top 50 Genes
#
# Samples are annotated with the group derived from their names (trailing
# replicate numbers are removed).

# %%
from seqplore.analysis.heatmap import fpkm_heatmap, save_figure

figure = fpkm_heatmap(fpkm, stats, n_genes=50, q_max=0.05)
figure.show()

# %% [markdown]
# ### Customized Heatmap
#
# Genes and samples can be selected directly, the colors can use quantile
# breaks and the clustering can use correlation distances.

# %%
from seqplore.analysis.heatmap import expression_heatmap, quantile_breaks

log_fpkm = fpkm.subset(significant.top(30).genes).log_transform()
scaled = log_fpkm.scale_rows()
figure = expression_heatmap(
    scaled,
    scale="none",
    metric="correlation",
    method="average",
    breaks=quantile_breaks(scaled, n=8),
    title="Top 30 genes, quantile colors",
)
figure.show()

# %%
save_figure(figure, DIR / "heatmap.html")
