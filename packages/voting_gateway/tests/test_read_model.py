from collections import namedtuple
from unittest.mock import MagicMock

import pytest

from voting_gateway.errors import ErrorKind, GatewayError
from voting_gateway.models import VotingState, WinnerResult, state_name
from voting_gateway.read_model import Shape, decode_record, decode_winners

from .conftest import VOTER

Winners = namedtuple("Winners", ["winnerIndexes", "voteCount"])


def _names(contract, names):
    contract.functions.getCandidate.side_effect = lambda i: MagicMock(
        call=MagicMock(return_value=(names[i], 5))
    )


@pytest.mark.parametrize(
    "raw, shape",
    [
        ([[0, 2], 5], Shape.ORDERED),
        (([0, 2], 5), Shape.ORDERED),
        ({"winnerIndexes": [0, 2], "voteCount": 5}, Shape.NAMED),
        (Winners([0, 2], 5), Shape.NAMED),
        ({0: [0, 2], 1: 5}, Shape.POSITIONAL),
        ({"0": ["0", "2"], "1": "5", "__length__": 2}, Shape.POSITIONAL),
    ],
)
def test_all_winner_shapes_decode_identically(raw, shape):
    assert decode_record(raw, ("winnerIndexes", "voteCount")).shape == shape
    assert decode_winners(raw) == ((0, 2), 5)


def test_single_winner_index_is_accepted():
    assert decode_winners({"winnerIndexes": 1, "voteCount": 4}) == ((1,), 4)


def test_unknown_shape_is_a_node_error():
    with pytest.raises(GatewayError) as info:
        decode_winners("garbage")
    assert info.value.kind == ErrorKind.NODE_ERROR


def test_list_candidates_assigns_ordinal_indexes(read_model, contract):
    contract.functions.getCandidates.return_value.call.return_value = [
        ("Alice", 3),
        {"name": "Bob", "voteCount": 0},
        {"0": "Carol", "1": "7"},
    ]
    candidates = read_model.list_candidates()
    assert [c.index for c in candidates] == [0, 1, 2]
    assert [c.as_dict() for c in candidates] == [
        {"index": 0, "name": "Alice", "voteCount": 3},
        {"index": 1, "name": "Bob", "voteCount": 0},
        {"index": 2, "name": "Carol", "voteCount": 7},
    ]


def test_list_candidates_empty(read_model, contract):
    contract.functions.getCandidates.return_value.call.return_value = []
    assert read_model.list_candidates() == []


def test_malformed_candidate_is_rejected(read_model, contract):
    contract.functions.getCandidates.return_value.call.return_value = [("Alice", 3), ("", -1)]
    with pytest.raises(GatewayError) as info:
        read_model.list_candidates()
    assert info.value.kind == ErrorKind.NODE_ERROR


def test_voting_state_in_progress(read_model):
    snapshot = read_model.get_voting_state()
    assert (snapshot.state, snapshot.stateName) == (1, "InProgress")


def test_unknown_voting_state_label(read_model, contract):
    contract.functions.votingState.return_value.call.return_value = 7
    snapshot = read_model.get_voting_state()
    assert (snapshot.state, snapshot.stateName) == (7, "Unknown")
    assert state_name(VotingState.Ended) == "Ended"


def test_winner_requires_ended_and_skips_winner_read(read_model, contract):
    contract.functions.votingState.return_value.call.return_value = VotingState.NotStarted
    with pytest.raises(GatewayError) as info:
        read_model.get_winner()
    assert info.value.kind == ErrorKind.VOTING_NOT_ENDED
    contract.functions.getWinners.assert_not_called()


def test_single_winner(read_model, contract):
    contract.functions.votingState.return_value.call.return_value = 2
    contract.functions.getWinners.return_value.call.return_value = [[1], 5]
    _names(contract, ["Alice", "Bob"])

    result = read_model.get_winner()
    assert result.winner == "Bob"
    assert result.isTie is False
    assert result.message == "Bob won with 5 votes"


def test_tie_names_every_winner(read_model, contract):
    contract.functions.votingState.return_value.call.return_value = 2
    contract.functions.getWinners.return_value.call.return_value = {"0": [0, 1], "1": 5}
    _names(contract, ["Alice", "Bob"])

    result = read_model.get_winner()
    assert result.isTie is True
    assert result.winner == ["Alice", "Bob"]
    assert result.winnerIndexes == (0, 1)
    assert "Alice" in result.message and "Bob" in result.message
    assert result.message == "Tie between Alice and Bob with 5 votes each"


@pytest.mark.parametrize("indexes, tie", [((), False), ((0,), False), ((0, 1), True), ((0, 1, 2), True)])
def test_is_tie_iff_more_than_one_index(indexes, tie):
    names = tuple(f"c{i}" for i in indexes)
    assert WinnerResult(winnerIndexes=indexes, voteCount=1, winnerNames=names).isTie is tie


def test_has_voted_rejects_bad_address_without_reading(read_model, contract):
    with pytest.raises(GatewayError) as info:
        read_model.has_voted("0xnot-an-address")
    assert info.value.kind == ErrorKind.INVALID_ADDRESS
    contract.functions.hasVoted.assert_not_called()


def test_has_voted(read_model, contract):
    contract.functions.hasVoted.return_value.call.return_value = True
    assert read_model.has_voted(VOTER.lower()) is True
    contract.functions.hasVoted.assert_called_with(VOTER)


def test_read_revert_is_classified(read_model, contract):
    contract.functions.getCandidates.return_value.call.side_effect = RuntimeError("execution reverted: NoCandidates")
    with pytest.raises(GatewayError) as info:
        read_model.list_candidates()
    assert info.value.kind == ErrorKind.NO_CANDIDATES


def test_read_transport_failure_is_node_error(read_model, contract):
    contract.functions.votingState.return_value.call.side_effect = ConnectionResetError("reset")
    with pytest.raises(GatewayError) as info:
        read_model.get_voting_state()
    assert info.value.kind == ErrorKind.NODE_ERROR
