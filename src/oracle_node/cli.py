"""CLI entrypoint for oracle-node."""

import sys

import rich_click as click

from oracle_node import __version__, log
from oracle_node.chain import Web3ChainClient
from oracle_node.config import get_config
from oracle_node.errors import OracleError
from oracle_node.model import InputDescriptor, OracleKind
from oracle_node.node import serve as serve_node

click.rich_click.USE_MARKDOWN = True


@click.group()
@click.version_option(version=__version__, prog_name="oracle-node")
def oracle_node() -> None:
    """Oracle node: answers coordinator tasks off-chain and submits the results."""


@oracle_node.command("serve")
@click.argument(
    "kinds",
    nargs=-1,
    type=click.Choice([kind.value for kind in OracleKind]),
)
@click.option("-m", "--model", "models", multiple=True, help="Model to serve. Can be repeated.")
@click.option("--task-id", type=click.IntRange(min=0), default=None, help="Process a single task.")
@click.option("--from", "from_block", type=click.IntRange(min=0), default=None, help="First block to scan.")
@click.option(
    "--to",
    "to_block",
    type=click.IntRange(min=0),
    default=None,
    help="Last block to scan. Without it the node keeps following new blocks.",
)
def serve(
    kinds: tuple[str, ...],
    models: tuple[str, ...],
    task_id: int | None,
    from_block: int | None,
    to_block: int | None,
) -> None:
    """Process tasks for the given KINDS (default: every kind the node is registered for)."""

    if task_id is not None and (from_block is not None or to_block is not None):
        raise click.UsageError("--task-id cannot be combined with --from/--to.")
    if to_block is not None and from_block is None:
        raise click.UsageError("--to requires --from.")

    config = get_config()
    log.init(config.log.dir, log_level=config.log.level, log_filename=config.log.filename)

    try:
        report = serve_node(
            kinds=[OracleKind(kind) for kind in kinds],
            models=list(models),
            task_id=task_id,
            from_block=from_block,
            to_block=to_block,
            config=config,
        )
    except OracleError as e:
        raise click.ClickException(str(e)) from e

    for phase, count in sorted(report.counts.items()):
        click.echo(f"{phase}: {count}")
    if report.ingest_error is not None:
        click.echo(f"ingest error: {report.ingest_error}", err=True)
    for (failed_id, task_kind), kind in sorted(report.failures.items()):
        click.echo(f"task {failed_id} ({task_kind.value}) failed: {kind.value}", err=True)

    if report.mode != "continuous" and not report.ok:
        sys.exit(1)


@oracle_node.command("view")
@click.option("--task-id", type=click.IntRange(min=0), default=None, help="Task to show.")
@click.option("--from", "from_block", type=click.IntRange(min=0), default=None, help="First block.")
@click.option("--to", "to_block", type=click.IntRange(min=0), default=None, help="Last block.")
def view(task_id: int | None, from_block: int | None, to_block: int | None) -> None:
    """Show a task, or the coordinator status updates in a block range."""

    if task_id is None and (from_block is None or to_block is None):
        raise click.UsageError("Either --task-id or both --from and --to are required.")

    config = get_config()
    try:
        chain = Web3ChainClient(config.chain)
        if task_id is not None:
            request = chain.get_task_request(task_id)
            descriptor = InputDescriptor.from_bytes(request.input)
            _emit_lines(
                [
                    f"task:      {request.task_id}",
                    f"status:    {request.status.name}",
                    f"requester: {request.requester}",
                    f"protocol:  {request.protocol}",
                    f"models:    {', '.join(request.models)}",
                    f"input:     {descriptor.key if descriptor.type == 'remote' else descriptor.data!r}",
                ]
            )
            _emit_lines(
                [
                    f"response:  {r.responder} score {r.score} output {r.output!r}"
                    for r in chain.get_responses(task_id)
                ]
            )
        else:
            assert from_block is not None and to_block is not None
            events = chain.get_status_events(from_block, to_block)
            _emit_lines(
                [
                    f"{event.block_number}  task {event.task_id}  "
                    f"{event.status_before.name} -> {event.status_after.name}"
                    for event in events
                ]
            )
    except OracleError as e:
        raise click.ClickException(str(e)) from e


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def main() -> None:
    oracle_node()


if __name__ == "__main__":
    main()
