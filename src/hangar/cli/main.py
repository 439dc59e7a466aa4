"""Hangar command line entry point."""

from __future__ import annotations

import click

from hangar import __version__
from hangar.cli.commands.deploy import deploy
from hangar.cli.commands.serve import serve


@click.group()
@click.version_option(__version__, prog_name="hangar")
def main() -> None:
    """Hangar - build and deploy agent bundles as hosted services."""


main.add_command(serve)
main.add_command(deploy)


if __name__ == "__main__":
    main()
