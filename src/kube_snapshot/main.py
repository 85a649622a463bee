"""CLI entrypoint for the snapshot collector."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from pydantic import TypeAdapter
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt

from kube_snapshot import __version__
from kube_snapshot.archive import create_archive
from kube_snapshot.collection.tasks import CollectionTask, CommandTask, host_info_task
from kube_snapshot.config import ExtraCommand, Settings, get_settings
from kube_snapshot.errors import SnapshotError
from kube_snapshot.runner import Orchestrator, print_result

EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_FATAL = 2


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Collect a read-only diagnostic snapshot of a Kubernetes cluster.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--namespace",
        "-n",
        action="append",
        default=None,
        help="Namespace to collect (repeatable; prompts when omitted on a terminal)",
    )
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=None,
        help="Directory to create the timestamped run directory in",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: KUBECONFIG env or ~/.kube/config)",
    )
    parser.add_argument("--context", default=None, help="Kubernetes context to collect from")
    parser.add_argument(
        "--workers",
        "-w",
        type=int,
        default=None,
        help="Concurrent queries (default: 1, strictly sequential)",
    )
    parser.add_argument(
        "--extra-commands",
        type=Path,
        default=None,
        help='JSON file with extra commands: [{"name": "...", "command": ["..."]}]',
    )
    parser.add_argument("--no-host-info", action="store_true", help="Skip local tool/host captures")
    parser.add_argument("--no-archive", action="store_true", help="Do not create a .tar.gz")
    parser.add_argument(
        "--keep-dir",
        action="store_true",
        help="Keep the uncompressed directory after archiving",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def _prompt_namespaces(default: list[str]) -> list[str]:
    answer = Prompt.ask("Enter namespace(s), space separated", default=" ".join(default))
    return answer.split() or default


def _apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    updates: dict[str, object] = {}
    if args.kubeconfig:
        updates["kubeconfig"] = args.kubeconfig
    if args.context:
        updates["context"] = args.context
    if args.output_dir:
        updates["output_dir"] = args.output_dir
    if args.workers is not None:
        updates["workers"] = args.workers
    if args.no_host_info:
        updates["collect_host_info"] = False
    if args.no_archive:
        updates["compress"] = False
    if args.keep_dir:
        updates["keep_directory"] = True
    if args.extra_commands:
        adapter = TypeAdapter(list[ExtraCommand])
        updates["extra_commands"] = adapter.validate_json(args.extra_commands.read_bytes())
    merged = settings.model_dump()
    merged.update(updates)
    # Re-validate so CLI values get the same bounds as environment values
    return Settings(**merged)


def build_extensions(settings: Settings) -> list[CollectionTask]:
    """Extension tasks appended after the built-in sequence."""
    extensions: list[CollectionTask] = []
    if settings.collect_host_info:
        extensions.append(host_info_task())
    if settings.extra_commands:
        extensions.append(CommandTask("custom", settings.extra_commands))
    return extensions


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for kube-snapshot CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logger = logging.getLogger("kube_snapshot")
    console = Console()

    try:
        settings = _apply_args(get_settings(), args)
        namespaces = args.namespace
        if not namespaces:
            namespaces = _prompt_namespaces(settings.namespaces) if sys.stdin.isatty() else settings.namespaces
        namespaces = [ns for value in namespaces for ns in value.split()]

        orchestrator = Orchestrator(
            settings=settings,
            namespaces=namespaces,
            extensions=build_extensions(settings),
        )
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
        try:
            result = orchestrator.run()
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        if settings.compress:
            result.archive = create_archive(result.output_dir, remove_source=not settings.keep_directory)
        print_result(result, console)
        if result.cancelled:
            return EXIT_CANCELLED
        logger.info("Collection completed successfully!")
        return EXIT_OK
    except (SnapshotError, ValueError, OSError) as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except Exception as e:
        logging.exception("Collection failed")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
