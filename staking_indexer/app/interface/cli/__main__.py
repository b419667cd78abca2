import asyncio
import inspect
import json
import logging
from dataclasses import asdict, is_dataclass

import typer
from dotenv import load_dotenv
from InquirerPy import inquirer

from staking_indexer.app.interface.tasks import TASKS
from staking_indexer.app.interface.tasks.replay_events_task import replay_events_task
from staking_indexer.app.interface.tasks.rollback_task import rollback_task
from staking_indexer.app.interface.tasks.status_task import status_task

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer()
indexer_app = typer.Typer(help="cli for materializing staking pool state.")
app.add_typer(indexer_app, name="indexer")

# Interactive prompts for task parameters, by parameter name.
_PROMPTS: dict[str, tuple[str, str]] = {
    "path": ("Delivery log (JSON lines):", "deliveries.jsonl"),
    "store_backend": ("Store backend (sqlalchemy | memory):", "sqlalchemy"),
    "reader_backend": ("Balance reader backend (web3 | none):", "web3"),
    "chain_id": ("Chain ID (e.g. 42161 for Arbitrum):", "1"),
    "common_ancestor_block": ("Common ancestor block (kept, inclusive):", "0"),
}
_INT_PARAMS = ("chain_id", "common_ancestor_block")


def _echo_result(result: object) -> None:
    if result is None:
        return
    if is_dataclass(result):
        result = asdict(result)
    typer.echo(json.dumps(result, indent=2, default=str))


@indexer_app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]
    kwargs: dict[str, object] = {}

    for name in inspect.signature(task).parameters:
        if name not in _PROMPTS:
            continue
        message, default = _PROMPTS[name]
        value = inquirer.text(message=message, default=default).execute()
        kwargs[name] = int(value) if name in _INT_PARAMS else value

    _echo_result(asyncio.run(task(**kwargs)))  # type: ignore


@indexer_app.command("replay")
def replay(
    path: str = typer.Argument(..., help="JSON-lines delivery log."),
    store_backend: str = typer.Option("sqlalchemy", help="sqlalchemy | memory"),
    reader_backend: str = typer.Option("web3", help="web3 | none"),
) -> None:
    _echo_result(
        asyncio.run(
            replay_events_task(path=path, store_backend=store_backend, reader_backend=reader_backend)
        )
    )


@indexer_app.command("rollback")
def rollback(
    chain_id: int = typer.Argument(...),
    common_ancestor_block: int = typer.Argument(..., help="Last block to keep."),
) -> None:
    _echo_result(asyncio.run(rollback_task(chain_id=chain_id, common_ancestor_block=common_ancestor_block)))


@indexer_app.command("status")
def status() -> None:
    _echo_result(asyncio.run(status_task()))


if __name__ == "__main__":
    typer.echo("--- Staking Indexer CLI ---")
    app()
