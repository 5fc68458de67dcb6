from dataclasses import dataclass
from typing import Dict, List

from modules.candidate_grid import CandidateGrid


@dataclass(frozen=True)
class EliminationRecord:
    """Why and when a candidate stopped receiving evaluations."""
    candidate_id: str
    candidate_index: int
    fold_id: str
    eliminated_after: int  # number of folds consumed when dropped
    reason: str
    detail: str = ""


class EliminationState:
    """
    Active candidates of one workflow plus a sparse map of eliminations.

    Candidates are never removed from the arena; elimination only moves an
    index out of the active set, and an eliminated index can never come back.
    """

    def __init__(self, candidates: CandidateGrid):
        self._candidates = candidates
        self._active: List[int] = [c.index for c in candidates]
        self._records: Dict[int, EliminationRecord] = {}

    @property
    def active(self) -> List[int]:
        return list(self._active)

    @property
    def n_active(self) -> int:
        return len(self._active)

    def is_active(self, index: int) -> bool:
        return index in self._active

    def eliminate(self, index: int, fold_id: str, eliminated_after: int,
                  reason: str, detail: str = "") -> EliminationRecord:
        if index in self._records:
            raise ValueError(f"Candidate {self._candidates[index].id} was already eliminated.")
        if index not in self._active:
            raise ValueError(f"Candidate index {index} is not part of this race.")
        record = EliminationRecord(
            candidate_id=self._candidates[index].id,
            candidate_index=index,
            fold_id=fold_id,
            eliminated_after=eliminated_after,
            reason=reason,
            detail=detail,
        )
        self._active.remove(index)
        self._records[index] = record
        return record

    @property
    def records(self) -> Dict[int, EliminationRecord]:
        return dict(self._records)

    def by_candidate_id(self) -> Dict[str, EliminationRecord]:
        return {r.candidate_id: r for r in self._records.values()}
