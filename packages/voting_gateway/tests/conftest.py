# packages/voting_gateway/tests/conftest.py
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3

from voting_gateway.chain import ChainConnector
from voting_gateway.read_model import ReadModelTranslator
from voting_gateway.transactions import TransactionOrchestrator

CONTRACT = Web3.to_checksum_address("0x" + "a" * 40)
OWNER_KEY = "0x" + "1" * 64
OWNER = Account.from_key(OWNER_KEY).address
VOTER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TX_HASH = b"\xcc" * 32

OWNER_FUNCTIONS = ("addCandidate", "startVoting", "endVoting")


def make_contract(state: int = 1, voted: bool = False):
    """A contract mock whose reads and writes behave like a healthy deployment."""
    contract = MagicMock()
    fns = contract.functions
    fns.votingState.return_value.call.return_value = state
    fns.hasVoted.return_value.call.return_value = voted
    fns.owner.return_value.call.return_value = OWNER
    fns.getCandidates.return_value.call.return_value = [("Alice", 3), ("Bob", 1)]
    for name in OWNER_FUNCTIONS + ("vote",):
        call = getattr(fns, name).return_value
        call.estimate_gas.return_value = 50_000
        call.build_transaction.side_effect = lambda params: {**params, "to": CONTRACT, "data": "0x", "value": 0}
    fns.vote.return_value.transact.return_value = TX_HASH
    contract.events.CandidateAdded.return_value.process_receipt.return_value = [
        SimpleNamespace(args={"index": 2, "name": "Carol"})
    ]
    return contract


def make_web3(contract):
    w3 = MagicMock()
    w3.is_connected.return_value = True
    w3.net.version = "31337"
    w3.eth.chain_id = 31337
    w3.eth.get_code.return_value = b"\x60\x80\x60\x40"
    w3.eth.contract.return_value = contract
    w3.eth.gas_price = 10**9
    w3.eth.accounts = [VOTER]
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.get_balance.return_value = 2 * 10**18
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = SimpleNamespace(status=1, blockNumber=123, gasUsed=45_000)
    return w3


@pytest.fixture
def contract():
    return make_contract()


@pytest.fixture
def web3(contract):
    return make_web3(contract)


@pytest.fixture
def connector(web3):
    conn = ChainConnector(web3_factory=lambda url: web3)
    conn.initialize("http://node:8545", CONTRACT, OWNER_KEY)
    return conn


@pytest.fixture
def read_model(connector):
    return ReadModelTranslator(connector)


@pytest.fixture
def orchestrator(connector, read_model):
    return TransactionOrchestrator(connector, read_model)
