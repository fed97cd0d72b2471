import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import CONFIG_FILE, Config
from .constants import APP_NAME, LOCAL_CONFIG_FILE
from .sync import RepositoryState, SyncOptions, synchronize

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool, config: Config) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): Log debug messages instead of info and above.
        config (Config): Supplies the optional rotating log file.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.logging.file:
        log_file = Path(config.logging.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def show_config_reference() -> None:
    """Prints a table of every configuration option."""
    console.print(f"Global config: [bold]{CONFIG_FILE}[/bold]")
    console.print(f"Project config: [bold]{LOCAL_CONFIG_FILE}[/bold]\n")

    table = Table(title="Configuration Options")
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="green")
    table.add_column("Type")
    table.add_column("Default")
    table.add_column("Description")

    table.add_row("core", "repo", "str", "-", "Default dependency repository URL.")
    table.add_row("", "branch", "str", '"master"', "Mainline branch to commit to.")
    table.add_row("", "modules_dir", "str", '"node_modules"', "Installed tree.")
    table.add_row("", "manifest", "str", '"package.json"', "Dependency manifest.")

    table.add_row("npm", "executable", "str", '"npm"', "Package manager binary.")
    table.add_row(
        "",
        "max_command_length",
        "int",
        "8191",
        "Command-line ceiling for batched 'npm rebuild' calls.",
    )

    table.add_row(
        "rebuild",
        "platform_only",
        "table",
        '{fsevents = "darwin"}',
        "Packages only rebuilt on the given platform.",
    )

    table.add_row("sync", "cross_platform", "bool", "false", "Default --cross-platform.")
    table.add_row(
        "", "incremental_install", "bool", "false", "Default --incremental-install."
    )
    table.add_row("", "production", "bool", "false", "Default --production.")
    table.add_row("", "skip_install", "bool", "false", "Default --skip-install.")

    table.add_row("logging", "file", "str", "-", "Also log to this (rotated) file.")
    table.add_row(
        "",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for the log file before rotation (e.g., '5mb', '1gb').",
    )

    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=(
            "Lock all node_modules dependencies to a separate git repository."
        ),
    )
    parser.add_argument(
        "--repo", help="git url to repository with node_modules content"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Print progress log messages"
    )
    parser.add_argument(
        "--cross-platform",
        action="store_true",
        help="do not archive platform-specific files in node_modules",
    )
    parser.add_argument(
        "--incremental-install",
        action="store_true",
        help="start npm install with last node_modules instead of clearing them",
    )
    parser.add_argument(
        "--production", action="store_true", help="start npm install with production flag"
    )
    parser.add_argument(
        "--skip-install", action="store_true", help='do not run "npm install"'
    )
    parser.add_argument(
        "--config-list",
        action="store_true",
        help="List all available configuration options and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the npm-git-lock CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config_list:
        show_config_reference()
        return

    project_dir = Path.cwd()
    config = Config.load(project_dir)
    setup_logging(args.verbose, config)

    repo_url = args.repo or config.core.repo
    if not repo_url:
        logger.error("No dependency repository configured")
        err_console.print(
            "[bold red]ERROR:[/bold red] --repo is required "
            "(or set core.repo in npm-git-lock.toml)."
        )
        sys.exit(1)

    options = SyncOptions(
        repo_url=repo_url,
        verbose=args.verbose,
        cross_platform=args.cross_platform or config.sync.cross_platform,
        incremental_install=args.incremental_install
        or config.sync.incremental_install,
        production=args.production or config.sync.production,
        skip_install=args.skip_install or config.sync.skip_install,
    )

    try:
        with console.status("Synchronizing node_modules...", spinner="dots"):
            state = synchronize(project_dir, options, config)
    except Exception as e:
        logger.error(f"Synchronization failed: {e}")
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    modules = config.core.modules_dir
    if state is RepositoryState.PRESENT_MATCHING_TAG:
        console.print(f"[bold green]✔ {modules} already up to date.[/bold green]")
    else:
        console.print(f"[bold green]✔ {modules} synchronized.[/bold green]")
    sys.exit(0)


if __name__ == "__main__":
    main()
