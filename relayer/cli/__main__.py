# relayer/cli/__main__.py

"""
Bridge Relayer CLI

Usage: python -m relayer.cli [--config relayer.yaml] [command] [options]
"""

import click
from pathlib import Path

from .context import CLIContext
from ..core.logging import RelayerLogger


@click.group()
@click.option('--config', '-c', 'config_path', envvar='RELAYER_CONFIG', default='relayer.yaml',
              type=click.Path(dir_okay=False, path_type=Path),
              help='Relayer YAML configuration (env: RELAYER_CONFIG)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config_path, verbose):
    """Bridge Relayer - lock/mint and burn/release relay operations"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    RelayerLogger.configure(
        log_dir=Path.cwd() / "logs",
        log_level="DEBUG" if verbose else "INFO",
        console_enabled=True,
        file_enabled=False,
        structured_format=True,
    )

    cli_context = CLIContext(config_path)
    ctx.obj['cli_context'] = cli_context
    ctx.call_on_close(cli_context.close)


from .commands.relay import run, status
from .commands.transfers import dead_letters, requeue
from .commands.database import init_db

cli.add_command(run)
cli.add_command(status)
cli.add_command(dead_letters)
cli.add_command(requeue)
cli.add_command(init_db)


if __name__ == '__main__':
    cli()
