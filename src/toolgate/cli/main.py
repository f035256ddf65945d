"""CLI entry point for toolgate."""

from __future__ import annotations

import logging

import click


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Inspect permission rules and dry-run decisions."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _register_subcommands() -> None:
    """Register CLI subcommands."""
    from toolgate.cli.commands import check_cmd, explain_cmd, rules_cmd

    cli.add_command(check_cmd, "check")
    cli.add_command(explain_cmd, "explain")
    cli.add_command(rules_cmd, "rules")


_register_subcommands()


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
