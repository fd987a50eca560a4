import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from web3 import Web3

from .chain import ChainConnector
from .errors import ErrorKind, GatewayError, classified_errors
from .models import Candidate, StateSnapshot, VotingState, WinnerResult, state_name

logger = logging.getLogger(__name__)

CANDIDATE_FIELDS = ("name", "voteCount")
WINNER_FIELDS = ("winnerIndexes", "voteCount")


class Shape(Enum):
    """How the client library encoded a multi-value contract return."""

    ORDERED = "ordered"  # (a, b)
    NAMED = "named"  # {"a": ..., "b": ...} or a record with attributes
    POSITIONAL = "positional"  # {0: ..., 1: ...} / {"0": ..., "1": ...}


@dataclass(frozen=True)
class DecodedRecord:
    shape: Shape
    values: tuple


def _positional_key(raw: Mapping, position: int):
    if position in raw:
        return position
    if str(position) in raw:
        return str(position)
    return None


def decode_record(raw: Any, fields: Sequence[str]) -> DecodedRecord:
    """Resolve ``raw`` into one of the three known shapes, in ``fields`` order."""
    if isinstance(raw, Mapping):
        if all(f in raw for f in fields):
            return DecodedRecord(Shape.NAMED, tuple(raw[f] for f in fields))
        keys = [_positional_key(raw, i) for i in range(len(fields))]
        if None not in keys:
            return DecodedRecord(Shape.POSITIONAL, tuple(raw[k] for k in keys))
    elif isinstance(raw, tuple) and all(hasattr(raw, f) for f in fields):
        # named tuples, as returned for struct outputs when tuples are decoded
        return DecodedRecord(Shape.NAMED, tuple(getattr(raw, f) for f in fields))
    elif isinstance(raw, (list, tuple)) and len(raw) == len(fields):
        return DecodedRecord(Shape.ORDERED, tuple(raw))
    raise GatewayError(ErrorKind.NODE_ERROR, detail=f"unexpected record shape for {fields}: {raw!r}")


def _count(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise GatewayError(ErrorKind.NODE_ERROR, detail=f"{label} is not an integer: {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise GatewayError(ErrorKind.NODE_ERROR, detail=f"{label} is not an integer: {value!r}") from exc
    if number < 0:
        raise GatewayError(ErrorKind.NODE_ERROR, detail=f"{label} is negative: {number}")
    return number


def decode_candidate(raw: Any, index: int) -> Candidate:
    name, votes = decode_record(raw, CANDIDATE_FIELDS).values
    if not isinstance(name, str) or not name:
        raise GatewayError(ErrorKind.NODE_ERROR, detail=f"candidate {index} has no name: {name!r}")
    return Candidate(index=index, name=name, voteCount=_count(votes, "voteCount"))


def decode_winners(raw: Any) -> tuple[tuple[int, ...], int]:
    indexes, votes = decode_record(raw, WINNER_FIELDS).values
    if isinstance(indexes, (list, tuple)):
        winner_indexes = tuple(_count(i, "winner index") for i in indexes)
    else:
        winner_indexes = (_count(indexes, "winner index"),)
    return winner_indexes, _count(votes, "voteCount")


class ReadModelTranslator:
    """Read-only contract calls, normalised into the gateway's own types."""

    def __init__(self, connector: ChainConnector):
        self._connector = connector

    def _read(self, fn_name: str, *args):
        contract = self._connector.get_contract()
        with classified_errors(self._connector.explain):
            with self._connector.node_call(fn_name):
                return getattr(contract.functions, fn_name)(*args).call()

    def list_candidates(self) -> list[Candidate]:
        raw = self._read("getCandidates")
        return [decode_candidate(entry, index) for index, entry in enumerate(raw)]

    def get_candidate(self, index: int) -> Candidate:
        return decode_candidate(self._read("getCandidate", index), index)

    def get_voting_state(self) -> StateSnapshot:
        raw = self._read("votingState")
        state = _count(raw, "votingState")
        return StateSnapshot(state=state, stateName=state_name(state))

    def get_winner(self) -> WinnerResult:
        if self.get_voting_state().state != VotingState.Ended:
            raise GatewayError(ErrorKind.VOTING_NOT_ENDED)

        winner_indexes, votes = decode_winners(self._read("getWinners"))
        names = tuple(self.get_candidate(i).name for i in winner_indexes)
        result = WinnerResult(winnerIndexes=winner_indexes, voteCount=votes, winnerNames=names)
        logger.debug("Winner resolved: %s", result.message)
        return result

    def has_voted(self, address: str) -> bool:
        if not self._connector.is_valid_address(address):
            raise GatewayError(ErrorKind.INVALID_ADDRESS, detail=repr(address))
        return bool(self._read("hasVoted", Web3.to_checksum_address(address)))
