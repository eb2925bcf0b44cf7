"""
CLI entrypoint for micopy package.
"""
import argparse
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from colorama import Fore, Style, init as colorama_init

from .config import DEFAULT_CONFIG_NAME, DEFAULT_CONFIG_TEMPLATE, load_config
from .core import (
    ConfigurationError,
    CopyError,
    FolderConfiguration,
    IgnorePatternConfiguration,
    MicopyConfiguration,
    PathNotFoundError,
    build_plan,
    execute_plan,
)
from .progress import ProgressReporter

CLI_PATTERN_SET = "cli-excludes"


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="micopy",
        description="Copy folders into destinations, skipping files matched by ignore patterns.",
    )
    p.add_argument(
        "--config",
        type=Path,
        help=f"YAML configuration file (default: ./{DEFAULT_CONFIG_NAME})",
    )
    p.add_argument("--source", type=Path, help="Copy this directory instead of a config")
    p.add_argument("--destination", type=Path, help="Target directory for --source")
    p.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Glob pattern to skip in --source mode (repeatable)",
    )
    p.add_argument(
        "--parallelism",
        type=int,
        help="Concurrent copies (default 8, 0 = sequential)",
    )
    p.add_argument("--dry-run", action="store_true", help="List the plan without copying")
    p.add_argument(
        "--init",
        action="store_true",
        help=f"Write a sample {DEFAULT_CONFIG_NAME} and exit",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    ns = p.parse_args(argv)

    if (ns.source is None) != (ns.destination is None):
        p.error("--source and --destination must be given together")
    if ns.source is not None and ns.config is not None:
        p.error("--config cannot be combined with --source")
    if ns.exclude and ns.source is None:
        p.error("--exclude only applies to --source")
    if ns.parallelism is not None and ns.parallelism < 0:
        p.error("--parallelism must be 0 or greater")
    return ns


def _log(msg: str, color: str = "") -> None:
    print(f"{color}[micopy] {msg}{Style.RESET_ALL if color else ''}")


def _fail(err: Exception) -> NoReturn:
    print(f"{Fore.RED}Error: {err}{Style.RESET_ALL}", file=sys.stderr)
    sys.exit(1)


def _configuration(ns: argparse.Namespace) -> MicopyConfiguration:
    if ns.source is not None:
        excludes = tuple(ns.exclude)
        return MicopyConfiguration(
            folders=(
                FolderConfiguration(
                    str(ns.source.resolve()),
                    str(ns.destination.resolve()),
                    CLI_PATTERN_SET if excludes else None,
                ),
            ),
            ignore_patterns=(
                (IgnorePatternConfiguration(CLI_PATTERN_SET, excludes),) if excludes else ()
            ),
            parallelism=ns.parallelism,
        )

    config_path = (ns.config or Path(DEFAULT_CONFIG_NAME)).resolve()
    configuration = load_config(config_path)
    if ns.verbose:
        _log(f"Loaded configuration from {config_path}")
    if ns.parallelism is not None:
        configuration = MicopyConfiguration(
            configuration.folders, configuration.ignore_patterns, ns.parallelism
        )
    return configuration


def _write_template(path: Path) -> None:
    if path.exists():
        _fail(ConfigurationError(f"'{path}' already exists"))
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    _log(f"Wrote {path}", Fore.GREEN)


def main(argv: Optional[List[str]] = None) -> None:
    colorama_init()
    try:
        ns = _parse_args(argv)

        if ns.init:
            _write_template((ns.config or Path(DEFAULT_CONFIG_NAME)).resolve())
            return

        try:
            configuration = _configuration(ns)
        except ConfigurationError as e:
            _fail(e)

        if ns.verbose:
            _log(f"Scanning {len(configuration.folders)} folder(s) …")

        try:
            plan = build_plan(configuration.folders, configuration.ignore_patterns)
        except (ConfigurationError, PathNotFoundError) as e:
            _fail(e)

        if ns.verbose:
            _log(f"{len(plan)} files planned.")

        if ns.dry_run:
            for item in plan:
                print(f"{item.source_path} -> {item.destination_path}")
            _log(f"Dry run: {len(plan)} files would be copied.", Fore.YELLOW)
            return

        try:
            execute_plan(plan, configuration.parallelism, ProgressReporter())
        except CopyError as e:
            # leave the partially drawn bar on its own line
            print()
            print(
                f"{Fore.YELLOW}{e.completed} of {e.total} files copied before the error"
                f"{Style.RESET_ALL}",
                file=sys.stderr,
            )
            _fail(e)

    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
