#!/usr/bin/env python3
"""
Static API Documentation Scanner v1.0
=====================================
Generate an OpenAPI 3.0 document from Python web application source without
importing or running it.

Features:
  - Routes from decorators (Flask, FastAPI, ...) and external route files
  - Parameters and bodies from type hints, docstrings and validators
  - Model schemas with relations (SQLAlchemy, Django, pydantic)
  - Incremental builds with a per-file analysis cache
  - Exports: OpenAPI JSON/YAML, Postman, Insomnia
  - Watch mode: rebuild when sources change

Usage: python main.py [OPTIONS] <path>
"""

import sys
import os
import argparse
import tempfile
import shutil
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# =============================================================================
# VERSION
# =============================================================================
__version__ = "1.0.0"

# =============================================================================
# DEPENDENCY CHECK
# =============================================================================
REQUIRED = {
    "rich": "rich>=13.7.0",
    "git": "gitpython>=3.1.40",
    "dotenv": "python-dotenv>=1.0.0",
    "yaml": "pyyaml>=6.0",
    "watchdog": "watchdog>=3.0.0",
}

def check_deps():
    missing = []
    for mod, pkg in REQUIRED.items():
        try:
            __import__(mod)
        except ImportError:
            missing.append(pkg)
    if missing:
        print(f"\nMissing: pip install {' '.join(missing)}\n")
        sys.exit(1)

check_deps()

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box
import git

from analyzers.diagnostics import ConfigurationFailure, Diagnostic, ExportFailure, ScannerError, Severity
from cache.file_watcher import SourceWatcher
from config import GeneratorConfig
from export.export_manager import ExportManager
from generators.openapi_generator import BuildResult, OpenApiGenerator, load_route_bindings, load_security

console = Console()

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure structured logging for the scanner."""
    logger = logging.getLogger("api_scanner")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler with structured format
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)  # Only warnings and errors to console
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            datefmt='%Y-%m-%dT%H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger

logger = setup_logging()

# Format → default output file suffix
DEFAULT_EXPORT_FILES = {
    "json": "openapi.json",
    "yaml": "openapi.yaml",
    "postman": "postman.json",
    "insomnia": "insomnia.json",
}

# =============================================================================
# DISPLAY
# =============================================================================
def fmt_severity(s: Severity) -> str:
    colors = {Severity.ERROR: "bold red", Severity.WARNING: "yellow", Severity.INFO: "dim"}
    return f"[{colors.get(s, 'white')}]{s.value.upper()}[/{colors.get(s, 'white')}]"

def make_table(document: Dict[str, Any]) -> Table:
    t = Table(title=" Documented Operations", box=box.ROUNDED, header_style="bold magenta")
    t.add_column("#", style="dim", width=4)
    t.add_column("Method", width=8)
    t.add_column("Path", max_width=40)
    t.add_column("Operation", style="cyan", max_width=36)
    t.add_column("Params", width=7)
    t.add_column("Body", width=5)
    t.add_column("Auth", width=12)

    rows = [(path, method, op) for path, item in document.get("paths", {}).items() for method, op in item.items()]
    for i, (path, method, op) in enumerate(rows[:100], 1):
        shown = path[:37] + "..." if len(path) > 40 else path
        auth = ", ".join(name for req in op.get("security", []) for name in req) or "-"
        t.add_row(
            str(i), method.upper(), shown, op.get("operationId", ""),
            str(len(op.get("parameters", []))), "yes" if "requestBody" in op else "-", auth
        )

    if len(rows) > 100:
        t.add_row("...", "...", f"... +{len(rows) - 100} more", "", "", "", "")

    return t

def make_diagnostics_table(diagnostics: List[Diagnostic], limit: int = 20) -> Table:
    t = Table(title=" Diagnostics", box=box.ROUNDED, header_style="bold magenta")
    t.add_column("Severity", width=9)
    t.add_column("Kind", style="cyan", width=14)
    t.add_column("Location", style="dim", max_width=36)
    t.add_column("Message", max_width=60)

    order = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
    ranked = sorted(diagnostics, key=lambda d: (order[d.severity], d.path or "", d.line or 0))
    for d in ranked[:limit]:
        location = d.path or "-"
        if d.line:
            location += f":{d.line}"
        if d.declaration:
            location += f" ({d.declaration})"
        t.add_row(fmt_severity(d.severity), d.kind.value, location, d.message)

    if len(ranked) > limit:
        t.add_row("...", "", "", f"... +{len(ranked) - limit} more")

    return t

def make_summary(result: BuildResult) -> Panel:
    s = result.stats
    cache = s.get("cache") or {}
    txt = f"""
[bold cyan] Build Summary[/bold cyan]

[bold]Operations:[/bold] {s.get('operations', 0)} | Routes: {s.get('routes', 0)}
[bold]Files:[/bold] {s.get('files', 0)} | Changed: {s.get('changed', 0)} | Analyzed: {s.get('analyzed', 0)} | Cached: {s.get('cached', 0)} | Failed: {s.get('failed', 0)}
[bold]Models:[/bold] {s.get('models', 0)} | Dangling relations: {s.get('dangling_relations', 0)}
[bold]Validators:[/bold] {s.get('validators', 0)}
[bold]Schemas:[/bold] {s.get('schemas', 0)}

[bold cyan]Diagnostics:[/bold cyan]
   Errors: {len(result.errors)}
   Warnings: {len(result.warnings)}
"""
    if cache:
        txt += f"""
[bold cyan]Cache:[/bold cyan]
   Hits: {cache.get('hits', 0)} | Misses: {cache.get('misses', 0)} | Hit rate: {cache.get('hit_rate', 0.0):.0%}
"""
    return Panel(txt, title=" Analysis Results", border_style="cyan")

# =============================================================================
# OUTPUT
# =============================================================================
def parse_export(option: str, service_name: Optional[str] = None) -> Tuple[str, str]:
    """
    ``FORMAT[:FILE]`` → (format, filename)

    Example:
        >>> parse_export("postman:out/api.json")
        ('postman', 'out/api.json')
        >>> parse_export("yaml", "billing")
        ('yaml', 'billing-openapi.yaml')
    """
    fmt, _, filename = option.partition(":")
    fmt = fmt.strip().lower()
    if not filename:
        filename = f"{service_name or 'api'}-{DEFAULT_EXPORT_FILES.get(fmt, fmt + '.out')}"
    return fmt, filename

def write_outputs(result: BuildResult, args: argparse.Namespace) -> None:
    manager = ExportManager()

    if args.output:
        manager.export(result.document, "yaml" if args.output.endswith((".yaml", ".yml")) else "json", args.output)
        if not args.quiet:
            console.print(f"\n[green] Saved: {args.output}[/green]")

    for option in args.export or []:
        fmt, filename = parse_export(option, args.service_name)
        manager.export(result.document, fmt, filename)
        if not args.quiet:
            console.print(f"[green] {fmt} exported: {filename}[/green]")

def report(result: BuildResult, args: argparse.Namespace) -> None:
    if args.quiet:
        return
    console.print("\n" + "=" * 70)
    console.print(make_summary(result))
    if result.document.get("paths"):
        console.print(make_table(result.document))
    if result.diagnostics and (args.verbose or result.errors):
        console.print(make_diagnostics_table(result.diagnostics, limit=200 if args.verbose else 20))

# =============================================================================
# GIT HELPER
# =============================================================================
def clone_repo(url: str) -> str:
    tmp = tempfile.mkdtemp(prefix="apidoc_scan_")
    console.print(f"[cyan]Cloning: {url}[/cyan]")
    git.Repo.clone_from(url, tmp, depth=1)
    console.print(f"[green] Cloned[/green]")
    return tmp

# =============================================================================
# CONFIGURATION
# =============================================================================
def build_config(args: argparse.Namespace, target: str) -> GeneratorConfig:
    """Config file or environment, then CLI overrides."""
    if args.config:
        config = GeneratorConfig.from_file(args.config)
    else:
        config = GeneratorConfig.from_env()

    config.source_root = target
    if args.title:
        config.title = args.title
    if args.api_version:
        config.version = args.api_version
    if args.server:
        config.servers = [{"url": url} for url in args.server]
    if args.cache:
        config.cache_backend = args.cache
    if args.cache_path:
        config.cache_path = args.cache_path
    if args.max_file_size:
        config.max_file_size_mb = args.max_file_size
    if args.flatten:
        config.flatten = True
    if args.no_decorator_routes:
        config.decorator_routes = False
    return config.validate()

# =============================================================================
# MAIN CLI
# =============================================================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"Static API Documentation Scanner v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py ./app                                  # Print summary, decorator routes only
  python main.py ./app -o openapi.json                  # Write the OpenAPI document
  python main.py ./app --routes routes.yaml             # Add externally declared routes
  python main.py ./app --auth security.yaml             # Declare security schemes
  python main.py ./app --export postman --export yaml   # Several exports at once
  python main.py ./app --cache sqlite --watch           # Incremental rebuilds on change
  python main.py https://github.com/org/repo.git        # Scan a remote repository
        """
    )

    # Target
    parser.add_argument("target", help="Directory or Git URL to scan")

    # Input options
    input_group = parser.add_argument_group("Input Options")
    input_group.add_argument("--routes", metavar="FILE", help="Route bindings file (YAML or JSON)")
    input_group.add_argument("--auth", metavar="FILE", help="Security schemes file (YAML or JSON)")
    input_group.add_argument("--config", metavar="FILE", help="Config file (YAML or JSON)")
    input_group.add_argument("--no-decorator-routes", action="store_true",
                             help="Only document routes from --routes")

    # Output options
    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument("-o", "--output", help="OpenAPI output file (.json, .yaml)")
    output_group.add_argument("--export", metavar="FORMAT[:FILE]", action="append",
                              help="Export as json, yaml, postman or insomnia (repeatable)")
    output_group.add_argument("--service-name", "-s", metavar="NAME",
                              help="Name used for default export file names")
    output_group.add_argument("--title", help="API title")
    output_group.add_argument("--api-version", metavar="VERSION", help="API version")
    output_group.add_argument("--server", metavar="URL", action="append", help="Server URL (repeatable)")
    output_group.add_argument("--flatten", action="store_true", help="Inline related models")

    # Build options
    build_group = parser.add_argument_group("Build Options")
    build_group.add_argument("--cache", choices=["memory", "sqlite", "none"], help="Cache backend")
    build_group.add_argument("--cache-path", metavar="FILE", help="SQLite cache file")
    build_group.add_argument("--clear-cache", action="store_true", help="Drop cached analyses first")
    build_group.add_argument("--max-file-size", type=int, help="Skip files larger than this (MB)")
    build_group.add_argument("--watch", action="store_true", help="Rebuild when source files change")
    build_group.add_argument("--fail-on-error", action="store_true",
                             help="Exit with 1 when any ERROR diagnostic is reported")

    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("--log-file", metavar="FILE", help="JSON-lines log file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    return parser

def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    # Banner
    if not args.quiet:
        console.print(Panel.fit(
            f"[bold cyan] Static API Documentation Scanner v{__version__}[/bold cyan]\n"
            "[dim]Routes | Parameters | Models | Validators | Security[/dim]\n"
            "[dim]OpenAPI JSON/YAML | Postman | Insomnia[/dim]",
            border_style="cyan"
        ))

    target = args.target
    tmp = None
    exit_code = 0

    try:
        # Clone if URL
        if target.startswith(("http://", "https://", "git@")):
            tmp = clone_repo(target)
            target = tmp
        elif not os.path.exists(target):
            console.print(f"[red]Error: {target} not found[/red]")
            sys.exit(1)

        config = build_config(args, target)
        bindings = load_route_bindings(args.routes) if args.routes else []
        security = load_security(args.auth) if args.auth else {}

        generator = OpenApiGenerator(config)
        if args.clear_cache and generator.cache is not None:
            generator.cache.reset()

        def run_build() -> BuildResult:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                          console=console, disable=args.quiet) as prog:
                prog.add_task(f"[cyan]Analyzing {Path(target).name}", total=None)
                result = generator.build(target, bindings, security)
            report(result, args)
            write_outputs(result, args)
            return result

        result = run_build()

        if args.watch:
            with SourceWatcher(target, generator.cache, config.extensions, config.ignore_dirs) as watcher:
                if not args.quiet:
                    console.print(f"\n[bold cyan] Watching {target}[/bold cyan] [dim](Ctrl+C to stop)[/dim]")
                while True:
                    changed = watcher.wait_for_changes()
                    if not changed:
                        continue
                    if not args.quiet:
                        console.print(f"\n[cyan] {len(changed)} file(s) changed, rebuilding...[/cyan]")
                    result = run_build()

        # Determine exit code
        if args.fail_on_error and result.errors:
            if not args.quiet:
                console.print("\n[bold red] Failed: errors reported during analysis[/bold red]")
            exit_code = 1

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except (ConfigurationFailure, ExportFailure) as e:
        console.print(f"\n[red]Error: {e.message}[/red]")
        sys.exit(2)
    except (ScannerError, OSError, git.GitCommandError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        if args.verbose:
            console.print_exception()
        sys.exit(1)
    finally:
        if tmp and os.path.exists(tmp):
            shutil.rmtree(tmp, ignore_errors=True)

    if not args.quiet and exit_code == 0:
        console.print("\n[bold green] Complete![/bold green]")

    sys.exit(exit_code)

if __name__ == "__main__":
    main()
