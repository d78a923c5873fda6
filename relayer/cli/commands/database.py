# relayer/cli/commands/database.py

import sys

import click


@click.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the relayer tables if they do not exist"""
    cli_context = ctx.obj['cli_context']

    try:
        db_manager = cli_context.db_manager
        db_manager.create_schema()
        healthy = db_manager.health_check()
    except Exception as e:
        click.echo(f"❌ Database initialization failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Schema ready ({'healthy' if healthy else 'health check failed'})")
