"""Main CLI entry point for RuleGuard.

This module provides the main click group and lazy loading
of the command modules.
"""

import importlib
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ruleguard.log import setup_logging

# Console for rich output
console = Console()


class LazyGroup(click.Group):
    """A click Group that lazily loads commands.

    Command modules are only imported when they are invoked.
    """

    def __init__(self, *args, lazy_subcommands: Optional[dict[str, str]] = None, **kwargs):
        """Initialize the lazy group.

        Args:
            lazy_subcommands: Mapping of command names to module paths.
        """
        super().__init__(*args, **kwargs)
        self._lazy_subcommands = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        """List all available commands."""
        base = super().list_commands(ctx)
        lazy = list(self._lazy_subcommands.keys())
        return sorted(set(base + lazy))

    def get_command(self, ctx: click.Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, lazily loading if needed."""
        if cmd_name in self.commands:
            return self.commands[cmd_name]

        if cmd_name in self._lazy_subcommands:
            return self._lazy_load(cmd_name)

        return None

    def _lazy_load(self, cmd_name: str) -> click.Command:
        """Lazily load a command from its module path."""
        module_path = self._lazy_subcommands[cmd_name]
        module = importlib.import_module(module_path)

        cmd = None
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if isinstance(attr, click.Command) and attr.name == cmd_name:
                cmd = attr
                break

        if cmd is None:
            raise click.ClickException(f"Could not find command '{cmd_name}' in {module_path}")

        self.add_command(cmd)
        return cmd


# Command name -> module defining it
LAZY_SUBCOMMANDS = {
    "log": "ruleguard.cli.trade",
    "trades": "ruleguard.cli.trade",
    "delete": "ruleguard.cli.trade",
    "detach": "ruleguard.cli.trade",
    "rules": "ruleguard.cli.rules",
    "progress": "ruleguard.cli.progress",
    "achievements": "ruleguard.cli.achievements",
    "challenges": "ruleguard.cli.achievements",
    "migrate": "ruleguard.cli.migrate",
}


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(cls=LazyGroup, lazy_subcommands=LAZY_SUBCOMMANDS, context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="ruleguard")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the databases (overrides the config file).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml (default: ~/.config/ruleguard/config.toml).",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    data_dir: Optional[Path],
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """RuleGuard - trading discipline journal.

    Log trades with the rules you meant to follow, track rule violations,
    progress toward your growth target and unlock achievements.

    \b
    Quick Start:
      ruleguard rules add "Never move the stop"
      ruleguard log INFY long 1500 1525 10 --rule "Never move the stop=followed"
      ruleguard progress
      ruleguard achievements
    """
    setup_logging(verbose)
    obj = ctx.ensure_object(dict)
    obj["data_dir"] = data_dir
    obj["config_path"] = config_path


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
