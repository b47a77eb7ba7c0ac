"""Entity resolution: scoring, candidate generation, decisions and batches.

Pipeline for one batch:
1. SimilarityScorer compares normalized names
2. CandidateGenerator ranks registry entities per record
3. MatchResolver turns candidates into a Decision (overrides adjust it)
4. BatchOrchestrator runs 2-3 for every record and reports cardinality
"""

from .batch import BatchOrchestrator, collect_duplicate_groups, refresh_batch, run_batch
from .candidates import CandidateGenerator, MatchingOptions, generate_candidates
from .resolver import (
    MatchResolver,
    clear_match,
    deselect_target,
    detect_cardinality,
    flag_duplicates,
    mark_create_new,
    mark_skip,
    rename_new,
    select_target,
    toggle_target,
    unflag_duplicates,
)
from .similarity import LEGAL_SUFFIXES, SimilarityScorer, normalize_name, score

__all__ = [
    # Similarity
    "LEGAL_SUFFIXES",
    "SimilarityScorer",
    "normalize_name",
    "score",
    # Candidates
    "CandidateGenerator",
    "MatchingOptions",
    "generate_candidates",
    # Resolver and overrides
    "MatchResolver",
    "detect_cardinality",
    "select_target",
    "deselect_target",
    "toggle_target",
    "clear_match",
    "mark_create_new",
    "mark_skip",
    "rename_new",
    "flag_duplicates",
    "unflag_duplicates",
    # Batch
    "BatchOrchestrator",
    "collect_duplicate_groups",
    "refresh_batch",
    "run_batch",
]
