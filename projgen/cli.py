"""CLI entrypoints for projgen commands."""

from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .config import CONFIG_FILENAME, ENV_CACHE_DIR, CacheSettings, ConfigError, load_settings
from .coordinator import ProjectCoordinator, build_coordinator
from .discovery import ToolDiscovery
from .errors import AggregateError, GenerationError, format_error
from .logging import configure_logging, get_logger
from .models import GenerationResult, PreviewResult
from .stores import ToolCache
from .stores.manager import CacheManager


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_cache_dir_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Tool cache directory (defaults to $PROJGEN_CACHE_DIR or ~/.cache/projgen).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="projgen",
        description="Scaffold multi-component projects with external toolchains or built-in templates.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate a project from a .projgen.yml configuration.",
    )
    _add_verbose_option(generate_parser, suppress_default=True)
    generate_parser.add_argument(
        "config",
        nargs="?",
        default=CONFIG_FILENAME,
        help=f"Path to the configuration file or its directory (defaults to ./{CONFIG_FILENAME}).",
    )
    generate_parser.add_argument("--output", type=Path, help="Override the output directory.")
    generate_parser.add_argument(
        "--offline",
        action="store_true",
        help="Skip network probes and use cached tool information or fallback templates.",
    )
    generate_parser.add_argument(
        "--disable-parallel",
        action="store_true",
        help="Generate components one at a time.",
    )
    generate_parser.add_argument(
        "--force-overwrite",
        action="store_true",
        help="Remove existing output before generating (a backup is still taken).",
    )
    generate_parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Do not snapshot the output directory before generating.",
    )
    generate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the generated structure without writing anything.",
    )
    generate_parser.add_argument(
        "--stream-output",
        action="store_true",
        help="Stream external tool output to the terminal.",
    )
    generate_parser.add_argument(
        "--no-external-tools",
        action="store_true",
        help="Never invoke external toolchains; use built-in templates only.",
    )
    generate_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Overall time limit for the run in seconds.",
    )

    tools_parser = subparsers.add_parser("tools", help="Inspect bootstrap toolchains.")
    _add_verbose_option(tools_parser, suppress_default=True)
    tools_sub = tools_parser.add_subparsers(dest="tools_command", required=True)
    check_parser = tools_sub.add_parser("check", help="Check tool availability and versions.")
    _add_cache_dir_option(check_parser)
    check_parser.add_argument(
        "types",
        nargs="*",
        help="Component types to check (defaults to every registered tool).",
    )
    install_parser = tools_sub.add_parser("install-help", help="Show installation instructions for a tool.")
    install_parser.add_argument("tool", help="Tool name, e.g. go or gradle.")
    install_parser.add_argument("--os", dest="os_name", default="", help="Target OS (defaults to this machine).")

    cache_parser = subparsers.add_parser("cache", help="Manage the persistent tool cache.")
    _add_verbose_option(cache_parser, suppress_default=True)
    _add_cache_dir_option(cache_parser)
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("stats", help="Show cache statistics.")
    cache_sub.add_parser("clear", help="Remove every cache entry.")
    cache_sub.add_parser("clean-expired", help="Remove expired cache entries.")
    cache_sub.add_parser("validate", help="Check the cache file for corrupt entries.")
    cache_sub.add_parser("refresh", help="Re-probe every registered tool.")
    export_parser = cache_sub.add_parser("export", help="Write the cache to an export file.")
    export_parser.add_argument("path", type=Path)
    import_parser = cache_sub.add_parser("import", help="Replace the cache with an export file.")
    import_parser.add_argument("path", type=Path)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service (needs the service extra).")
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for projgen commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        if args.command == "generate":
            _run_generate(args)
        elif args.command == "tools":
            _run_tools(parser, args)
        elif args.command == "cache":
            _run_cache(args)
        elif args.command == "serve":
            _run_serve(parser, args)
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except (GenerationError, AggregateError) as exc:
        parser.exit(1, f"projgen {args.command} failed:\n{format_error(exc)}\n")
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")
    except (OSError, ValueError) as exc:
        parser.exit(1, f"projgen {args.command} failed: {exc}\nRun with --verbose for more details.\n")


def _run_generate(args: argparse.Namespace) -> None:
    settings = load_settings(Path(args.config))
    options = settings.project.options
    if args.output is not None:
        settings.project.output_dir = args.output.expanduser().resolve()
    options.verbose = options.verbose or bool(args.verbose)
    options.offline = options.offline or args.offline
    options.disable_parallel = options.disable_parallel or args.disable_parallel
    options.force_overwrite = options.force_overwrite or args.force_overwrite
    options.dry_run = options.dry_run or args.dry_run
    options.stream_output = options.stream_output or args.stream_output
    if args.no_backup:
        options.create_backup = False
    if args.no_external_tools:
        options.use_external_tools = False

    coordinator = build_coordinator(settings)
    if options.dry_run:
        _print_preview(coordinator.dry_run(settings.project))
        return

    deadline = time.monotonic() + args.timeout if args.timeout else None
    cancel = threading.Event()
    try:
        with _cancel_on_interrupt(cancel):
            result = coordinator.generate(settings.project, cancel=cancel, deadline=deadline)
    finally:
        _save_cache(coordinator)
    _print_result(result)


def _run_tools(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.tools_command == "install-help":
        discovery = ToolDiscovery()
        print(discovery.get_install_instructions(args.tool, args.os_name), end="")
        return

    discovery = ToolDiscovery(cache=_open_cache(args.cache_dir))
    if args.types:
        tools: List[str] = []
        for component_type in args.types:
            for name in discovery.get_tools_for_component(component_type):
                if name not in tools:
                    tools.append(name)
        if not tools:
            parser.exit(1, f"No tools registered for: {', '.join(args.types)}\n")
    else:
        tools = discovery.list_registered_tools()

    check = discovery.check_requirements(tools)
    for name in tools:
        tool = check.tools.get(name)
        if tool is None or not tool.available:
            print(f"  missing   {name}")
            continue
        status = "outdated" if name in check.outdated else "ok"
        version = tool.installed_version.splitlines()[0] if tool.installed_version else "unknown version"
        print(f"  {status:<9} {name}: {version}")
    _save_cache_for(discovery)
    if check.missing:
        print("")
        for name in check.missing:
            print(discovery.get_install_instructions(name))
        parser.exit(1)


def _run_cache(args: argparse.Namespace) -> None:
    manager = CacheManager(_open_cache(args.cache_dir))
    command = args.cache_command
    if command == "stats":
        stats = manager.get_stats()
        print(f"Cache file:        {stats.cache_file}")
        print(f"Total entries:     {stats.total_entries}")
        print(f"Available tools:   {stats.available_tools}")
        print(f"Unavailable tools: {stats.unavailable_tools}")
        print(f"Expired entries:   {stats.expired_entries}")
        print(f"TTL:               {stats.ttl}")
        print(f"Offline mode:      {stats.offline_mode}")
    elif command == "clear":
        manager.clear()
        print("Cache cleared")
    elif command == "clean-expired":
        removed = manager.clean_expired()
        print(f"Removed {removed} expired entr{'y' if removed == 1 else 'ies'}")
    elif command == "validate":
        report = manager.validate()
        print(f"Cache is {'valid' if report.valid else 'INVALID'} ({report.total_entries} entries)")
        for name in report.corrupted_entries:
            print(f"  corrupted: {name}")
        for name in report.expired_entries:
            print(f"  expired:   {name}")
        for warning in report.warnings:
            print(f"  warning:   {warning}")
        if not report.valid:
            sys.exit(1)
    elif command == "refresh":
        results = manager.refresh(ToolDiscovery(cache=manager.cache))
        for name, available in sorted(results.items()):
            print(f"  {'available' if available else 'missing':<9} {name}")
    elif command == "export":
        count = manager.export(args.path)
        print(f"Exported {count} entr{'y' if count == 1 else 'ies'} to {args.path}")
    elif command == "import":
        count = manager.import_(args.path)
        print(f"Imported {count} entr{'y' if count == 1 else 'ies'} from {args.path}")


def _run_serve(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    try:
        from .service import serve
    except ModuleNotFoundError as exc:
        parser.exit(1, f"projgen serve needs the service extra (pip install projgen[service]): {exc}\n")
    serve(host=args.host, port=args.port)


def _open_cache(cache_dir: Optional[Path]) -> ToolCache:
    if cache_dir is None and os.environ.get(ENV_CACHE_DIR):
        cache_dir = Path(os.environ[ENV_CACHE_DIR])
    settings = CacheSettings(dir=cache_dir.expanduser() if cache_dir else None)
    return ToolCache(settings.to_cache_config())


@contextmanager
def _cancel_on_interrupt(cancel: threading.Event) -> Iterator[None]:
    """Turn Ctrl-C into a cancellation request so the run can roll back."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        get_logger("cli").warning("Interrupted; cancelling generation and rolling back")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _save_cache(coordinator: ProjectCoordinator) -> None:
    _save_cache_for(coordinator.discovery)


def _save_cache_for(discovery: ToolDiscovery) -> None:
    try:
        discovery.save_cache()
    except OSError as exc:
        get_logger("cli").warning("Could not save tool cache: %s", exc)


def _print_result(result: GenerationResult) -> None:
    print(f"Project generated at {_relativize(result.project_root)} in {result.duration:.1f}s")
    for component in result.components:
        location = _relativize(component.path) if component.path else "-"
        print(f"  {component.name} ({component.type}) via {component.method or '-'}: {location}")
    if result.warnings:
        print("Warnings:")
        for warning in result.warnings:
            print(f"  - {warning}")
    steps = [(component.name, step) for component in result.components for step in component.manual_steps]
    if steps:
        print("Manual steps:")
        for name, step in steps:
            print(f"  [{name}] {step}")
    if result.log_file is not None:
        print(f"Log written to {_relativize(result.log_file)}")


def _print_preview(preview: PreviewResult) -> None:
    print(f"Dry run: project would be generated at {_relativize(preview.project_root)}")
    for item in preview.components:
        print(f"  {item.name} ({item.type}) via {item.method or 'unavailable'} -> {_relativize(item.target_path)}")
        for name in item.files:
            print(f"      {name}")
        for warning in item.warnings:
            print(f"      warning: {warning}")
    for warning in preview.warnings:
        print(f"Warning: {warning}")


def _relativize(path: Path) -> str:
    try:
        return str(Path(path).relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
