"""CLI entry point for proctop."""

from pathlib import Path

import click

from proctop.config import DEFAULT_INTERVAL, Config
from proctop.models import SortDirection, SortKey


@click.command()
@click.version_option(package_name="proctop")
@click.option(
    "-d",
    "--interval",
    type=float,
    default=DEFAULT_INTERVAL,
    show_default=True,
    help="Seconds between samples (minimum 0.1).",
)
@click.option(
    "-s",
    "--sort",
    "sort_key",
    type=click.Choice([key.value for key in SortKey]),
    default=SortKey.CPU.value,
    show_default=True,
    help="Initial sort column.",
)
@click.option(
    "--order",
    type=click.Choice([direction.value for direction in SortDirection]),
    default=None,
    help="Sort order (default: the column's natural order).",
)
@click.option("-t", "--tree", is_flag=True, help="Start in tree mode.")
@click.option("-f", "--filter", "filter_text", default="", help="Initial command filter.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write JSON-lines logs to this file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    show_default=True,
)
def main(
    interval: float,
    sort_key: str,
    order: str | None,
    tree: bool,
    filter_text: str,
    log_file: Path | None,
    log_level: str,
) -> None:
    """Interactive process monitor."""
    from proctop.app import ProctopApp
    from proctop.logging import configure

    config = Config(
        interval=interval,
        sort_key=SortKey(sort_key),
        sort_direction=SortDirection(order) if order else None,
        tree_mode=tree,
        filter_text=filter_text,
        log_file=log_file,
        log_level=log_level,
    )
    configure(config)
    ProctopApp(config).run()


if __name__ == "__main__":
    main()
