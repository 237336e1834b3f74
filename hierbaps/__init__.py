"""hierbaps: Hierarchical Bayesian population-structure clustering.

Partitions a core-genome SNP alignment into genetically coherent clusters
by greedy optimisation of a Dirichlet-multinomial marginal likelihood, then
re-partitions each cluster to reveal nested sub-structure.
"""

__version__ = "1.0.0-dev"
