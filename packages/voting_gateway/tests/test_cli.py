import json
from decimal import Decimal

import pytest
from typer.testing import CliRunner

from voting_gateway import cli

from .conftest import OWNER, VOTER

runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_connect(monkeypatch, connector):
    monkeypatch.setattr(cli, "connect", lambda settings: connector)


def _invoke(*args):
    result = runner.invoke(cli.app, list(args))
    return result, json.loads(result.stdout)


def test_status():
    result, body = _invoke("status")
    assert result.exit_code == 0
    assert body == {"success": True, "state": 1, "stateName": "InProgress"}


def test_candidates():
    result, body = _invoke("candidates")
    assert result.exit_code == 0
    assert body["totalCandidates"] == 2
    assert body["candidates"][1] == {"index": 1, "name": "Bob", "voteCount": 1}


def test_has_voted_invalid_address_exits_nonzero():
    result, body = _invoke("has-voted", "0xbad")
    assert result.exit_code == 1
    assert body == {"success": False, "error": "Invalid address"}


def test_vote(contract):
    result, body = _invoke("vote", VOTER, "1")
    assert result.exit_code == 0, result.output
    assert body["candidateIndex"] == 1
    contract.functions.vote.assert_called_with(1)


def test_start():
    result, body = _invoke("start")
    assert result.exit_code == 0
    assert body["message"] == "Voting started successfully"
    assert body["blockNumber"] == 123


def test_balance_defaults_to_owner():
    result, body = _invoke("balance")
    assert result.exit_code == 0
    assert body["address"] == OWNER
    assert Decimal(body["balance"]) == 2


def test_unclassified_node_failure_prints_error_body(contract):
    contract.functions.vote.return_value.transact.side_effect = RuntimeError("node rejected transaction")
    result, body = _invoke("vote", VOTER, "0")
    assert result.exit_code == 1
    assert body == {"success": False, "error": "node rejected transaction"}
