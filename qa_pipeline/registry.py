"""
CaseRegistry: the ordered, id-deduplicated store of generated test cases.

Conflict policy: last write wins, and each colliding id produces exactly one
warning per stage. Ids missing from model output are filled from a counter
scoped to the registry (TS-NNN for high-level scenarios, TC-NNN otherwise).
"""

from __future__ import annotations
import logging
from typing import Dict, Iterator, List, Optional, Set

from .models import CaseDraft

logger = logging.getLogger(__name__)


def case_id_prefix(mode: str) -> str:
    return "TS" if mode == "high-level" else "TC"


class CaseRegistry:
    """Ordered map of case id to case draft with merge/dedup semantics."""

    def __init__(self, mode: str):
        self.mode = mode
        self.prefix = case_id_prefix(mode)
        self._cases: Dict[str, CaseDraft] = {}
        self._counter = 0
        self._stage = ""
        self._warned: Set[str] = set()
        self.warnings: List[str] = []

    def __len__(self) -> int:
        return len(self._cases)

    def __contains__(self, case_id: str) -> bool:
        return case_id in self._cases

    def __iter__(self) -> Iterator[CaseDraft]:
        return iter(self._cases.values())

    def get(self, case_id: str) -> Optional[CaseDraft]:
        return self._cases.get(case_id)

    def ids(self) -> List[str]:
        return list(self._cases)

    def cases(self) -> List[CaseDraft]:
        """Snapshot of the cases in first-seen order."""
        return list(self._cases.values())

    def begin_stage(self, stage: str) -> None:
        """Start a new stage; duplicate warnings are tracked per stage."""
        self._stage = stage
        self._warned = set()

    def next_fallback_id(self) -> str:
        """Next unused fallback id. The counter only moves forward."""
        while True:
            self._counter += 1
            candidate = f"{self.prefix}-{self._counter:03d}"
            if candidate not in self._cases:
                return candidate

    def insert(self, case: CaseDraft) -> str:
        """
        Insert a case, assigning a fallback id when it has none.

        Returns:
            The id the case was stored under
        """
        if not case.id:
            case = case.model_copy(update={"id": self.next_fallback_id()})
        case_id = case.id

        if case_id in self._cases and case_id not in self._warned:
            self._warned.add(case_id)
            message = f"Duplicate case id {case_id} detected. Latest slice overwrote the previous version."
            self.warnings.append(message)
            logger.warning(message)

        self._cases[case_id] = case
        return case_id

    def merge(self, cases: List[CaseDraft]) -> List[str]:
        """Insert a batch of cases in order; returns their stored ids."""
        return [self.insert(case) for case in cases]

    def revise(self, case: CaseDraft) -> bool:
        """
        Overwrite a case with its revised version.

        Revisions replace the whole case and do not count as duplicates.
        Cases without an id cannot be matched and are ignored.
        """
        if not case.id:
            logger.debug("Ignoring revised case without an id")
            return False
        self._cases[case.id] = case
        return True
