"""seqplore.analysis package.

Heatmaps, single-cell processing and cell type annotation.
"""
