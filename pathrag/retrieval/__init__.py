"""
Retrieval Layer - Path Search and Context Assembly.
"""

from pathrag.retrieval.context_builder import ContextBuilder, QueryContext, QueryParams
from pathrag.retrieval.path_finder import PathFinder, find_seed_to_seed_paths, score_pair_paths, select_paths

__all__ = [
    "PathFinder",
    "find_seed_to_seed_paths",
    "score_pair_paths",
    "select_paths",
    "ContextBuilder",
    "QueryContext",
    "QueryParams",
]
