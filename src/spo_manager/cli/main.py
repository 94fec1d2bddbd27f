"""Main entry point for the SharePoint Online Manager CLI."""

import click

from .. import __version__
from .commands import create_task, delete_task, init_config, list_tasks, results, run


@click.group()
@click.version_option(version=__version__, prog_name="spo-manager")
@click.pass_context
def cli(ctx):
    """SharePoint Online Manager - audit, compare and synchronize SharePoint sites.

    Define a task once with create-task, run it as often as needed with run,
    and inspect stored results with results.
    """
    ctx.ensure_object(dict)


cli.add_command(init_config)
cli.add_command(create_task)
cli.add_command(list_tasks)
cli.add_command(delete_task)
cli.add_command(run)
cli.add_command(results)


def main():
    """Main entry point function."""
    cli(prog_name="spo-manager")


if __name__ == "__main__":
    main()
