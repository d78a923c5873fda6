# relayer/cli/commands/relay.py

import sys

import click


@click.command('run')
@click.pass_context
def run(ctx):
    """Run both relay pipelines until SIGINT/SIGTERM"""
    cli_context = ctx.obj['cli_context']

    try:
        orchestrator = cli_context.orchestrator
        config = cli_context.config
        click.echo(f"🚀 Relaying {config.source.name} <-> {config.destination.name}")
        orchestrator.run_forever()
    except Exception as e:
        click.echo(f"❌ Relayer failed: {e}", err=True)
        sys.exit(1)

    click.echo("✅ Relayer stopped")


@click.command('status')
@click.pass_context
def status(ctx):
    """Show transfer counts per status and scan cursors"""
    cli_context = ctx.obj['cli_context']

    try:
        db_manager = cli_context.db_manager
        counts = db_manager.get_transfer_repo().count_by_status()
        cursors = db_manager.get_cursor_repo().list_cursors()
        processed = db_manager.get_ledger().total()
    except Exception as e:
        click.echo(f"❌ Status query failed: {e}", err=True)
        sys.exit(1)

    click.echo("📊 Transfers")
    for name, count in counts.items():
        click.echo(f"   {name:<22} {count:,}")

    click.echo(f"\n🧾 Processed events: {processed:,}")

    click.echo("\n📍 Cursors")
    if not cursors:
        click.echo("   (none yet)")
    for cursor in cursors:
        click.echo(f"   chain {cursor.chain_id:<10} {cursor.direction.value:<16} block {cursor.last_block:,}")
