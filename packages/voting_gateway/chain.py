import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from .errors import ErrorKind, GatewayError

logger = logging.getLogger(__name__)

DEFAULT_ABI_PATH = Path(__file__).parent / "abi" / "Voting.json"
DEFAULT_RECEIPT_TIMEOUT = 120.0

# requests' ConnectionError and Timeout both derive from OSError
TRANSPORT_ERRORS = (OSError,)


def http_web3(endpoint_url: str) -> Web3:
    """Build an HTTP web3 client for the node."""
    w3 = Web3(Web3.HTTPProvider(endpoint_url, request_kwargs={"timeout": 30}))
    # Proof-of-Authority middleware, required for many testnets and harmless on a local node.
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


def load_abi(path: Path) -> list:
    """Load an ABI from a compiled artifact (``{"abi": [...]}``) or a bare list."""
    with open(path) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict):
        return artifact["abi"]
    return artifact


def error_selectors(abi: list) -> dict[str, str]:
    """Map 4-byte selectors of the ABI's custom errors to their names."""
    selectors = {}
    for entry in abi:
        if entry.get("type") != "error":
            continue
        types = ",".join(i["type"] for i in entry.get("inputs", []))
        signature = f"{entry['name']}({types})"
        selectors[Web3.to_hex(Web3.keccak(text=signature)[:4])] = entry["name"]
    return selectors


def _has_code(code: Any) -> bool:
    if isinstance(code, str):
        return code not in ("", "0x", "0x0")
    return len(code) > 0


@dataclass(frozen=True)
class SigningIdentity:
    """The owner's address and the key handle that signs for it."""

    address: str
    _account: LocalAccount = field(repr=False)

    @classmethod
    def from_key(cls, private_key: str) -> "SigningIdentity":
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        try:
            account = Account.from_key(key)
        except ValueError as exc:
            raise GatewayError(ErrorKind.NO_SIGNING_IDENTITY, detail="invalid owner private key") from exc
        return cls(address=account.address, _account=account)

    def sign_transaction(self, tx: dict):
        return self._account.sign_transaction(tx)


class ChainConnector:
    """Owns the node connection, the contract handle and the owner identity.

    Constructed once per process and initialised at startup. Every accessor
    refuses to work before :meth:`initialize` has succeeded.
    """

    def __init__(
        self,
        web3_factory: Optional[Callable[[str], Web3]] = None,
        abi_path: Optional[Path] = None,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ):
        self._web3_factory = web3_factory or http_web3
        self._abi_path = Path(abi_path) if abi_path else DEFAULT_ABI_PATH
        self._abi: Optional[list] = None
        self._selectors: Optional[dict[str, str]] = None
        self.receipt_timeout = receipt_timeout
        self._reset()

    def _reset(self) -> None:
        self.endpoint_url: Optional[str] = None
        self.contract_address: Optional[str] = None
        self._web3: Optional[Web3] = None
        self._contract = None
        self._identity: Optional[SigningIdentity] = None
        self._network_id: Optional[str] = None
        self._chain_id: Optional[int] = None
        self.initialized = False

    @property
    def abi(self) -> list:
        if self._abi is None:
            self._abi = load_abi(self._abi_path)
        return self._abi

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(
        self,
        endpoint_url: str,
        contract_address: Optional[str],
        private_key: Optional[str] = None,
        expected_network_id: Optional[str] = None,
        expected_owner: Optional[str] = None,
    ) -> None:
        self._reset()

        w3 = self._web3_factory(endpoint_url)
        try:
            connected = w3.is_connected()
        except TRANSPORT_ERRORS as exc:
            raise GatewayError(ErrorKind.CONNECTION_ERROR, detail=f"{endpoint_url}: {exc}") from exc
        if not connected:
            raise GatewayError(ErrorKind.CONNECTION_ERROR, detail=f"{endpoint_url} is not reachable")

        with self.node_call("resolve network"):
            network_id = str(w3.net.version)
            chain_id = int(w3.eth.chain_id)
        logger.info("Connected to network %s (chain id %s)", network_id, chain_id)
        if expected_network_id and str(expected_network_id) != network_id:
            logger.warning("Configured network %s differs from node network %s", expected_network_id, network_id)

        if not contract_address:
            raise GatewayError(ErrorKind.CONTRACT_NOT_FOUND, detail="CONTRACT_ADDRESS not configured")
        if not self.is_valid_address(contract_address):
            raise GatewayError(ErrorKind.INVALID_ADDRESS, detail=f"contract address {contract_address!r}")
        address = Web3.to_checksum_address(contract_address)
        contract = w3.eth.contract(address=address, abi=self.abi)

        with self.node_call("read contract code"):
            code = w3.eth.get_code(address)
        if not _has_code(code):
            raise GatewayError(ErrorKind.CONTRACT_NOT_FOUND, detail=address)

        identity = None
        if private_key:
            identity = SigningIdentity.from_key(private_key)
            logger.info("Owner account loaded: %s", identity.address)
            if expected_owner and expected_owner.lower() != identity.address.lower():
                logger.warning("OWNER_ADDRESS %s does not match the owner key address %s", expected_owner, identity.address)
            self._check_owner(contract, identity)

        self.endpoint_url = endpoint_url
        self.contract_address = address
        self._web3 = w3
        self._contract = contract
        self._identity = identity
        self._network_id = network_id
        self._chain_id = chain_id
        self.initialized = True
        logger.info("Contract initialized at %s", address)

    def _check_owner(self, contract, identity: SigningIdentity) -> None:
        try:
            owner = contract.functions.owner().call()
        except (OSError, ValueError, Web3Exception) as exc:
            logger.warning("Could not read contract owner: %s", exc)
            return
        if str(owner).lower() != identity.address.lower():
            logger.warning("Owner key %s is not the contract owner %s; owner-only calls will revert", identity.address, owner)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def ensure_initialized(self) -> None:
        if not self.initialized:
            raise GatewayError(ErrorKind.NOT_INITIALIZED, detail="call initialize() first")

    def get_web3(self) -> Web3:
        self.ensure_initialized()
        return self._web3

    def get_contract(self):
        self.ensure_initialized()
        return self._contract

    def get_signing_identity(self) -> SigningIdentity:
        self.ensure_initialized()
        if self._identity is None:
            raise GatewayError(ErrorKind.NO_SIGNING_IDENTITY)
        return self._identity

    @property
    def network_id(self) -> str:
        self.ensure_initialized()
        return self._network_id

    @property
    def chain_id(self) -> int:
        self.ensure_initialized()
        return self._chain_id

    @staticmethod
    def is_valid_address(value: Any) -> bool:
        return isinstance(value, str) and Web3.is_address(value)

    # ------------------------------------------------------------------
    # Node primitives
    # ------------------------------------------------------------------

    @contextmanager
    def node_call(self, action: str):
        """Turn transport failures into ``NodeError``; everything else propagates."""
        try:
            yield
        except TRANSPORT_ERRORS as exc:
            raise GatewayError(ErrorKind.NODE_ERROR, detail=f"{action}: {exc}") from exc

    def get_gas_price(self) -> int:
        w3 = self.get_web3()
        with self.node_call("gas price"):
            return int(w3.eth.gas_price)

    def estimate_gas(self, call, sender: str) -> int:
        self.ensure_initialized()
        with self.node_call("estimate gas"):
            return int(call.estimate_gas({"from": sender}))

    def get_accounts(self) -> list[str]:
        w3 = self.get_web3()
        with self.node_call("list accounts"):
            return list(w3.eth.accounts)

    def get_transaction_count(self, address: str) -> int:
        w3 = self.get_web3()
        with self.node_call("transaction count"):
            return int(w3.eth.get_transaction_count(address, "pending"))

    def send_raw_transaction(self, signed) -> bytes:
        w3 = self.get_web3()
        with self.node_call("send raw transaction"):
            return w3.eth.send_raw_transaction(signed.raw_transaction)

    def transact(self, call, params: dict) -> bytes:
        """Submit through the node, which signs with one of its own accounts."""
        self.ensure_initialized()
        with self.node_call("send transaction"):
            return call.transact(params)

    def wait_for_receipt(self, tx_hash):
        w3 = self.get_web3()
        try:
            with self.node_call("wait for receipt"):
                return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as exc:
            raise GatewayError(ErrorKind.RECEIPT_TIMEOUT, detail=Web3.to_hex(tx_hash)) from exc

    def get_balance(self, address: str) -> Decimal:
        w3 = self.get_web3()
        if not self.is_valid_address(address):
            raise GatewayError(ErrorKind.INVALID_ADDRESS, detail=repr(address))
        with self.node_call("balance"):
            wei = w3.eth.get_balance(Web3.to_checksum_address(address))
        return Web3.from_wei(wei, "ether")

    # ------------------------------------------------------------------
    # Failure text
    # ------------------------------------------------------------------

    def explain(self, exc: BaseException) -> str:
        """Text to classify ``exc`` by, with custom-error selectors resolved by name."""
        text = str(exc)
        data = getattr(exc, "data", None)
        if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
            if self._selectors is None:
                self._selectors = error_selectors(self.abi)
            name = self._selectors.get(data[:10].lower())
            if name:
                text = f"{text} ({name})"
        return text
