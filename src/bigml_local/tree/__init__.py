"""
Decision tree structures used by local models.

- Predicate: branch condition of a node
- Tree: classification and regression trees
- BoostedTree: gradient boosted trees
"""

from .boosted_tree import BoostedTree
from .predicate import Predicate
from .tree import Tree

__all__ = [
    "BoostedTree",
    "Predicate",
    "Tree",
]
