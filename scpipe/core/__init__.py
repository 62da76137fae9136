"""Core computational modules for scpipe.

This package contains the pipeline stages:
- store: Matrix store holding counts and aligned metadata
- preprocessing: QC filtering, normalization, feature selection, scaling
- reduction: PCA, JackStraw significance, UMAP/t-SNE projection
- clustering: kNN/SNN graph construction and Louvain clustering
- markers: Differential expression marker testing
"""
