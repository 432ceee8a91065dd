"""
RevisionChunker: partitions review feedback into bounded, severity-ordered work units.

Pure functions only; no model calls happen here.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List

from .models import SEVERITY_RANK, ReviewFeedbackItem, RevisionChunk


@dataclass
class CaseFeedbackGroup:
    """All feedback addressed to one case."""
    case_id: str
    first_seen: int
    feedback: List[ReviewFeedbackItem] = field(default_factory=list)

    @property
    def max_rank(self) -> int:
        return max(SEVERITY_RANK[item.severity] for item in self.feedback)


def group_feedback(feedback: List[ReviewFeedbackItem]):
    """Split feedback into per-case groups and a general (no case id) bucket."""
    groups: Dict[str, CaseFeedbackGroup] = {}
    general: List[ReviewFeedbackItem] = []

    for item in feedback:
        if item.case_id is None:
            general.append(item)
            continue
        group = groups.get(item.case_id)
        if group is None:
            group = groups[item.case_id] = CaseFeedbackGroup(item.case_id, len(groups))
        group.feedback.append(item)

    return list(groups.values()), general


def rank_groups(groups: List[CaseFeedbackGroup]) -> List[CaseFeedbackGroup]:
    """Most severe first, then most discussed, then first seen."""
    return sorted(groups, key=lambda g: (-g.max_rank, -len(g.feedback), g.first_seen))


def _make_chunk(groups: List[CaseFeedbackGroup], general: List[ReviewFeedbackItem]) -> RevisionChunk:
    feedback = [item for group in groups for item in group.feedback] + list(general)
    return RevisionChunk(feedback=feedback, case_ids=[group.case_id for group in groups])


def chunk_feedback(
    feedback: List[ReviewFeedbackItem],
    soft_limit: int,
    hard_limit: int,
) -> List[RevisionChunk]:
    """
    Partition feedback into revision chunks.

    When there are at most ``soft_limit`` cases, everything goes into a single
    chunk. Otherwise cases are packed greedily in ranked order: a chunk is
    closed once it holds ``hard_limit`` cases, or once it holds ``soft_limit``
    cases and the remaining cases could not join it without passing
    ``hard_limit``. General feedback is attached to every chunk.
    """
    if soft_limit < 1 or hard_limit < 1:
        raise ValueError("soft_limit and hard_limit must be at least 1")

    groups, general = group_feedback(feedback)
    if not groups:
        return [RevisionChunk(feedback=list(general), case_ids=[])] if general else []

    ranked = rank_groups(groups)
    if len(ranked) <= soft_limit and len(ranked) <= hard_limit:
        return [_make_chunk(ranked, general)]

    chunks: List[RevisionChunk] = []
    current: List[CaseFeedbackGroup] = []
    for position, group in enumerate(ranked):
        remaining = len(ranked) - position
        full = len(current) >= hard_limit
        settled = len(current) >= soft_limit and len(current) + remaining > hard_limit
        if current and (full or settled):
            chunks.append(_make_chunk(current, general))
            current = []
        current.append(group)

    if current:
        chunks.append(_make_chunk(current, general))
    return chunks
