import json
from typing import Optional

import typer

from .config import Settings
from .chain import ChainConnector
from .errors import MESSAGES, ErrorKind, GatewayError
from .read_model import ReadModelTranslator
from .transactions import TransactionOrchestrator

app = typer.Typer(help="Query and drive the voting contract through the gateway core.")


def connect(settings: Settings) -> ChainConnector:
    connector = ChainConnector(abi_path=settings.abi_path, receipt_timeout=settings.receipt_timeout)
    connector.initialize(
        settings.rpc_url,
        settings.contract_address,
        settings.owner_private_key,
        expected_network_id=settings.network_id,
        expected_owner=settings.owner_address,
    )
    return connector


def _run(action):
    """Print the JSON result of ``action(connector)``; errors exit with code 1."""
    try:
        data = action(connect(Settings.from_env()))
    except GatewayError as exc:
        typer.echo(json.dumps({"success": False, "error": exc.message}))
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(json.dumps({"success": False, "error": str(exc) or MESSAGES[ErrorKind.UNCLASSIFIED]}))
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"success": True, **data}))


@app.command()
def serve(host: Optional[str] = None, port: Optional[int] = None):
    """Run the HTTP API."""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("voting_gateway.main:app", host=host or settings.host, port=port or settings.port)


@app.command()
def status():
    def action(connector):
        snapshot = ReadModelTranslator(connector).get_voting_state()
        return {"state": snapshot.state, "stateName": snapshot.stateName}

    _run(action)


@app.command()
def candidates():
    def action(connector):
        found = ReadModelTranslator(connector).list_candidates()
        return {"totalCandidates": len(found), "candidates": [c.as_dict() for c in found]}

    _run(action)


@app.command()
def winner():
    def action(connector):
        result = ReadModelTranslator(connector).get_winner()
        return {
            "winner": result.winner,
            "winnerIndexes": list(result.winnerIndexes),
            "voteCount": result.voteCount,
            "isTie": result.isTie,
            "message": result.message,
        }

    _run(action)


@app.command("has-voted")
def has_voted(address: str = typer.Argument(...)):
    _run(lambda connector: {"address": address, "hasVoted": ReadModelTranslator(connector).has_voted(address)})


@app.command()
def balance(address: Optional[str] = typer.Argument(None)):
    """Ether balance of ADDRESS, or of the owner account when omitted."""

    def action(connector):
        target = address or connector.get_signing_identity().address
        return {"address": target, "balance": str(connector.get_balance(target))}

    _run(action)


@app.command("add-candidate")
def add_candidate(name: str = typer.Argument(...)):
    def action(connector):
        result = TransactionOrchestrator(connector).add_candidate(name)
        return {
            "candidateIndex": result.candidateIndex,
            "name": result.name,
            "transactionHash": result.transactionHash,
            "blockNumber": result.blockNumber,
            "gasUsed": result.gasUsed,
        }

    _run(action)


@app.command()
def vote(voter: str = typer.Argument(...), candidate_index: int = typer.Argument(...)):
    def action(connector):
        result = TransactionOrchestrator(connector).cast_vote(voter, candidate_index)
        return {
            "voter": result.voter,
            "candidateIndex": result.candidateIndex,
            "transactionHash": result.transactionHash,
            "blockNumber": result.blockNumber,
            "gasUsed": result.gasUsed,
        }

    _run(action)


def _lifecycle(result):
    return {"message": result.message, "transactionHash": result.transactionHash, "blockNumber": result.blockNumber}


@app.command()
def start():
    _run(lambda connector: _lifecycle(TransactionOrchestrator(connector).start_voting()))


@app.command()
def end():
    _run(lambda connector: _lifecycle(TransactionOrchestrator(connector).end_voting()))


if __name__ == "__main__":
    app()
