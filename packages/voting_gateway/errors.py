from contextlib import contextmanager
from enum import Enum
from typing import Callable, Optional


class ErrorKind(str, Enum):
    """Closed set of failures the gateway can report."""

    NOT_INITIALIZED = "NotInitialized"
    NO_SIGNING_IDENTITY = "NoSigningIdentity"
    CONNECTION_ERROR = "ConnectionError"
    CONTRACT_NOT_FOUND = "ContractNotFound"
    NODE_ERROR = "NodeError"
    GAS_ESTIMATION_FAILED = "GasEstimationFailed"
    ACCOUNT_NOT_CONTROLLED = "AccountNotControlled"
    INVALID_ADDRESS = "InvalidAddress"
    INVALID_REQUEST = "InvalidRequest"
    VOTING_NOT_IN_PROGRESS = "VotingNotInProgress"
    VOTING_NOT_ENDED = "VotingNotEnded"
    TRANSACTION_REVERTED = "TransactionReverted"
    RECEIPT_TIMEOUT = "ReceiptTimeout"
    # contract revert reasons
    UNAUTHORIZED = "Unauthorized"
    EMPTY_NAME = "EmptyName"
    DUPLICATE_CANDIDATE = "DuplicateCandidate"
    CANDIDATE_INDEX_OUT_OF_BOUNDS = "CandidateIndexOutOfBounds"
    ALREADY_VOTED = "AlreadyVoted"
    VOTING_NOT_STARTED = "VotingNotStarted"
    VOTING_IN_PROGRESS = "VotingInProgress"
    VOTING_HAS_ENDED = "VotingHasEnded"
    NO_CANDIDATES = "NoCandidates"
    NO_VOTES_CAST = "NoVotesCast"
    UNCLASSIFIED = "Unclassified"


MESSAGES = {
    ErrorKind.NOT_INITIALIZED: "Blockchain connection not initialized",
    ErrorKind.NO_SIGNING_IDENTITY: "Owner account not configured",
    ErrorKind.CONNECTION_ERROR: "Unable to connect to Ethereum node",
    ErrorKind.CONTRACT_NOT_FOUND: "No contract found at specified address",
    ErrorKind.NODE_ERROR: "Blockchain node request failed",
    ErrorKind.GAS_ESTIMATION_FAILED: "Gas estimation failed",
    ErrorKind.ACCOUNT_NOT_CONTROLLED: "Voter account not found in connected node",
    ErrorKind.INVALID_ADDRESS: "Invalid address",
    ErrorKind.INVALID_REQUEST: "Invalid request",
    ErrorKind.VOTING_NOT_IN_PROGRESS: "Voting is not currently in progress",
    ErrorKind.VOTING_NOT_ENDED: "Voting has not ended yet",
    ErrorKind.TRANSACTION_REVERTED: "On-chain transaction reverted",
    ErrorKind.RECEIPT_TIMEOUT: "Timed out waiting for transaction receipt",
    ErrorKind.UNAUTHORIZED: "Only contract owner can perform this action",
    ErrorKind.EMPTY_NAME: "Candidate name cannot be empty",
    ErrorKind.DUPLICATE_CANDIDATE: "Candidate with this name already exists",
    ErrorKind.CANDIDATE_INDEX_OUT_OF_BOUNDS: "Invalid candidate index",
    ErrorKind.ALREADY_VOTED: "This address has already voted",
    ErrorKind.VOTING_NOT_STARTED: "Voting has not started yet",
    ErrorKind.VOTING_IN_PROGRESS: "Voting is currently in progress",
    ErrorKind.VOTING_HAS_ENDED: "Voting has already ended",
    ErrorKind.NO_CANDIDATES: "No candidates have been added",
    ErrorKind.NO_VOTES_CAST: "No votes have been cast",
    ErrorKind.UNCLASSIFIED: "An unexpected error occurred",
}

STATUS_CODES = {
    ErrorKind.NOT_INITIALIZED: 503,
    ErrorKind.NO_SIGNING_IDENTITY: 503,
    ErrorKind.CONNECTION_ERROR: 502,
    ErrorKind.CONTRACT_NOT_FOUND: 404,
    ErrorKind.NODE_ERROR: 502,
    ErrorKind.GAS_ESTIMATION_FAILED: 502,
    ErrorKind.ACCOUNT_NOT_CONTROLLED: 403,
    ErrorKind.TRANSACTION_REVERTED: 502,
    ErrorKind.RECEIPT_TIMEOUT: 504,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.DUPLICATE_CANDIDATE: 409,
    ErrorKind.ALREADY_VOTED: 409,
    ErrorKind.NO_CANDIDATES: 404,
    ErrorKind.UNCLASSIFIED: 500,
}

# Ordered: the first substring found in the raw text decides the kind.
REVERT_REASONS = (
    ("Unauthorized", ErrorKind.UNAUTHORIZED),
    ("EmptyName", ErrorKind.EMPTY_NAME),
    ("DuplicateCandidate", ErrorKind.DUPLICATE_CANDIDATE),
    ("CandidateIndexOutOfBounds", ErrorKind.CANDIDATE_INDEX_OUT_OF_BOUNDS),
    ("AlreadyVoted", ErrorKind.ALREADY_VOTED),
    ("VotingNotStarted", ErrorKind.VOTING_NOT_STARTED),
    ("VotingHasNotStarted", ErrorKind.VOTING_NOT_STARTED),
    ("VotingInProgress", ErrorKind.VOTING_IN_PROGRESS),
    ("VotingHasEnded", ErrorKind.VOTING_HAS_ENDED),
    ("NoCandidates", ErrorKind.NO_CANDIDATES),
    ("NoVotesCast", ErrorKind.NO_VOTES_CAST),
)


def status_code_for(kind: ErrorKind) -> int:
    return STATUS_CODES.get(kind, 400)


class GatewayError(Exception):
    """A failure classified into one of the gateway's error kinds.

    ``str(err)`` is always the fixed user-facing message of the kind. The
    optional ``detail`` keeps the underlying cause for logs only.
    """

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        super().__init__(MESSAGES[kind])

    @property
    def message(self) -> str:
        return MESSAGES[self.kind]

    @property
    def status_code(self) -> int:
        return status_code_for(self.kind)

    def __repr__(self) -> str:
        return f"GatewayError({self.kind.value!r}, detail={self.detail!r})"


def classify(text: str) -> Optional[ErrorKind]:
    """Map raw node/contract error text to a revert-derived kind, if any."""
    for needle, kind in REVERT_REASONS:
        if needle in text:
            return kind
    return None


def classify_error(exc: BaseException, text: Optional[str] = None) -> BaseException:
    """Return the classified form of ``exc``.

    Already-classified errors come back as they are; unmatched ones are
    returned unchanged so unexpected failures are never mislabeled.
    """
    if isinstance(exc, GatewayError):
        return exc
    raw = text if text is not None else str(exc)
    kind = classify(raw)
    if kind is None:
        return exc
    return GatewayError(kind, detail=raw)


@contextmanager
def classified_errors(explain: Callable[[BaseException], str] = str):
    """Re-raise any failure in the block through :func:`classify_error`."""
    try:
        yield
    except Exception as exc:
        classified = classify_error(exc, explain(exc))
        if classified is exc:
            raise
        raise classified from exc
