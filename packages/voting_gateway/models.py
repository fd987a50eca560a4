from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Tuple

UNKNOWN_STATE = "Unknown"


class VotingState(IntEnum):
    NotStarted = 0
    InProgress = 1
    Ended = 2


def state_name(raw: int) -> str:
    """Label for an on-chain state value; unknown values stay readable."""
    try:
        return VotingState(raw).name
    except ValueError:
        return UNKNOWN_STATE


@dataclass(frozen=True)
class Candidate:
    index: int
    name: str
    voteCount: int

    def as_dict(self) -> dict:
        return {"index": self.index, "name": self.name, "voteCount": self.voteCount}


@dataclass(frozen=True)
class StateSnapshot:
    state: int
    stateName: str


@dataclass(frozen=True)
class TransactionResult:
    transactionHash: str
    blockNumber: int
    gasUsed: int
    # operation-specific fields
    candidateIndex: Optional[int] = None
    name: Optional[str] = None
    voter: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class WinnerResult:
    winnerIndexes: Tuple[int, ...]
    voteCount: int
    winnerNames: Tuple[str, ...] = field(default=())

    @property
    def isTie(self) -> bool:
        return len(self.winnerIndexes) > 1

    @property
    def winner(self):
        if not self.winnerNames:
            return None
        if self.isTie:
            return list(self.winnerNames)
        return self.winnerNames[0]

    @property
    def message(self) -> str:
        if not self.winnerNames:
            return "No winner could be determined"
        if self.isTie:
            names = list(self.winnerNames)
            joined = f"{', '.join(names[:-1])} and {names[-1]}"
            return f"Tie between {joined} with {self.voteCount} votes each"
        return f"{self.winnerNames[0]} won with {self.voteCount} votes"
