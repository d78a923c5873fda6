# relayer/cli/commands/transfers.py

import sys

import click

from ...types import InvalidTransitionError, TransferStatus


@click.command('dead-letters')
@click.option('--limit', type=int, default=50, help='Maximum transfers to list (default: 50)')
@click.option('--include-flagged/--no-include-flagged', default=True,
              help='Also list transfers flagged for reorg reconciliation')
@click.pass_context
def dead_letters(ctx, limit, include_flagged):
    """List transfers that need operator attention"""
    cli_context = ctx.obj['cli_context']

    statuses = [TransferStatus.DEAD_LETTERED]
    if include_flagged:
        statuses.append(TransferStatus.FLAGGED)

    try:
        transfers = cli_context.db_manager.get_transfer_repo().list_by_status(statuses, limit=limit)
    except Exception as e:
        click.echo(f"❌ Query failed: {e}", err=True)
        sys.exit(1)

    if not transfers:
        click.echo("✅ Nothing to review")
        return

    for transfer in transfers:
        event = transfer.originating_event
        click.echo(f"⚠️  {transfer.transfer_id} [{transfer.status.value}] {transfer.direction.value}")
        click.echo(f"     event:   chain {event.chain_id} block {event.block_number} "
                   f"tx {event.tx_hash} log {event.log_index}")
        click.echo(f"     amount:  {transfer.amount} -> {transfer.destination}")
        click.echo(f"     failure: {transfer.failure_kind} after {transfer.retry_count} attempt(s)")
        click.echo(f"     reason:  {transfer.last_error}")
        if transfer.submission_tx_hash:
            click.echo(f"     last tx: {transfer.submission_tx_hash} (nonce {transfer.submission_nonce})")


@click.command('requeue')
@click.argument('transfer_id')
@click.pass_context
def requeue(ctx, transfer_id):
    """Give a dead-lettered transfer a fresh retry budget

    The running relayer picks it up on its next recovery pass. A prior
    destination submission, if any, is checked before anything new is sent.
    """
    cli_context = ctx.obj['cli_context']

    try:
        transfer = cli_context.state_machine.requeue(transfer_id)
    except InvalidTransitionError as e:
        click.echo(f"❌ Cannot requeue: {e}", err=True)
        sys.exit(1)

    click.echo(f"🔁 {transfer.transfer_id} is now {transfer.status.value}")
