import logging
from typing import Any, Optional

from web3 import Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD

from .chain import ChainConnector, SigningIdentity
from .errors import ErrorKind, GatewayError, classified_errors, classify
from .models import TransactionResult, VotingState
from .read_model import ReadModelTranslator

logger = logging.getLogger(__name__)


class TransactionOrchestrator:
    """Runs state-changing contract calls from estimate to receipt.

    Owner-only calls are signed locally with the configured signing identity.
    Votes are sent through the node from one of the accounts it controls.
    Nothing is retried: a repeated write could be submitted twice.
    """

    def __init__(self, connector: ChainConnector, read_model: Optional[ReadModelTranslator] = None):
        self._connector = connector
        self._read_model = read_model or ReadModelTranslator(connector)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_candidate(self, name: str) -> TransactionResult:
        with classified_errors(self._connector.explain):
            contract = self._connector.get_contract()
            identity = self._connector.get_signing_identity()

            clean = name.strip() if isinstance(name, str) else ""
            if not clean:
                raise GatewayError(ErrorKind.EMPTY_NAME)

            tx_hash, receipt = self._send_as_owner(contract.functions.addCandidate(clean), identity)
            index = self._event_value(contract, "CandidateAdded", "index", receipt)

        return TransactionResult(
            transactionHash=tx_hash,
            blockNumber=int(receipt.blockNumber),
            gasUsed=int(receipt.gasUsed),
            candidateIndex=index,
            name=clean,
        )

    def cast_vote(self, voter_address: str, candidate_index: Any) -> TransactionResult:
        if not self._connector.is_valid_address(voter_address):
            raise GatewayError(ErrorKind.INVALID_ADDRESS, detail=repr(voter_address))
        if isinstance(candidate_index, bool) or not isinstance(candidate_index, int) or candidate_index < 0:
            raise GatewayError(ErrorKind.CANDIDATE_INDEX_OUT_OF_BOUNDS, detail=repr(candidate_index))

        with classified_errors(self._connector.explain):
            contract = self._connector.get_contract()
            account = self._node_account(voter_address)

            # The contract checks both again; these only avoid paying for a certain revert.
            if self._read_model.has_voted(account):
                raise GatewayError(ErrorKind.ALREADY_VOTED, detail=account)
            if self._read_model.get_voting_state().state != VotingState.InProgress:
                raise GatewayError(ErrorKind.VOTING_NOT_IN_PROGRESS)

            call = contract.functions.vote(candidate_index)
            gas, gas_price = self._price(call, account)
            raw_hash = self._connector.transact(call, {"from": account, "gas": gas, "gasPrice": gas_price})
            tx_hash, receipt = self._await(raw_hash)

        return TransactionResult(
            transactionHash=tx_hash,
            blockNumber=int(receipt.blockNumber),
            gasUsed=int(receipt.gasUsed),
            candidateIndex=candidate_index,
            voter=voter_address,
        )

    def start_voting(self) -> TransactionResult:
        return self._owner_call("startVoting", "Voting started successfully")

    def end_voting(self) -> TransactionResult:
        return self._owner_call("endVoting", "Voting ended successfully")

    # ------------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------------

    def _owner_call(self, fn_name: str, message: str) -> TransactionResult:
        with classified_errors(self._connector.explain):
            contract = self._connector.get_contract()
            identity = self._connector.get_signing_identity()
            tx_hash, receipt = self._send_as_owner(getattr(contract.functions, fn_name)(), identity)

        return TransactionResult(
            transactionHash=tx_hash,
            blockNumber=int(receipt.blockNumber),
            gasUsed=int(receipt.gasUsed),
            message=message,
        )

    def _node_account(self, address: str) -> str:
        """Find ``address`` among the accounts the node can sign for."""
        wanted = address.lower()
        for account in self._connector.get_accounts():
            if account.lower() == wanted:
                return Web3.to_checksum_address(account)
        raise GatewayError(ErrorKind.ACCOUNT_NOT_CONTROLLED, detail=address)

    def _price(self, call, sender: str) -> tuple[int, int]:
        try:
            gas = self._connector.estimate_gas(call, sender)
            gas_price = self._connector.get_gas_price()
        except Exception as exc:
            # A revert during estimation keeps its own kind; anything else is an estimation failure.
            text = self._connector.explain(exc)
            kind = classify(text)
            raise GatewayError(kind or ErrorKind.GAS_ESTIMATION_FAILED, detail=text) from exc
        return gas, gas_price

    def _send_as_owner(self, call, identity: SigningIdentity):
        gas, gas_price = self._price(call, identity.address)
        tx = call.build_transaction(
            {
                "from": identity.address,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": self._connector.get_transaction_count(identity.address),
                "chainId": self._connector.chain_id,
            }
        )
        signed = identity.sign_transaction(tx)
        return self._await(self._connector.send_raw_transaction(signed))

    def _await(self, raw_hash):
        tx_hash = Web3.to_hex(raw_hash)
        logger.info("Submitted transaction %s", tx_hash)
        receipt = self._connector.wait_for_receipt(raw_hash)
        if receipt.status != 1:
            raise GatewayError(ErrorKind.TRANSACTION_REVERTED, detail=f"tx {tx_hash}")
        logger.info("Transaction %s included in block %s", tx_hash, receipt.blockNumber)
        return tx_hash, receipt

    def _event_value(self, contract, event_name: str, arg: str, receipt) -> Optional[int]:
        """Read ``arg`` from the first ``event_name`` log; ``None`` when it is absent."""
        try:
            events = getattr(contract.events, event_name)().process_receipt(receipt, errors=DISCARD)
        except (ValueError, Web3Exception) as exc:
            logger.warning("Could not decode %s from receipt: %s", event_name, exc)
            return None
        if not events:
            logger.warning("%s event not found in transaction logs", event_name)
            return None
        return int(events[0].args[arg])
