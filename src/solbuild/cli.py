"""solbuild CLI: build, plan and clean commands."""

import argparse
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Any, Dict


def _format_diagnostic(diagnostic) -> str:
    where = ""
    if diagnostic.location is not None:
        where = f"{diagnostic.location.file}:{diagnostic.location.start}: "
    code = f" [{diagnostic.code}]" if diagnostic.code else ""
    return f"{where}{diagnostic.severity}: {diagnostic.message}{code}"


def _build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """CLI flags that were actually given, as BuildRequest fields."""
    overrides: Dict[str, Any] = {
        "compiler_version": getattr(args, "compiler_version", None),
        "offline": True if getattr(args, "offline", False) else None,
    }
    if args.command == "build":
        overrides.update({
            "force": True if args.force else None,
            "max_concurrency": args.jobs,
            "job_timeout": args.job_timeout,
            "global_timeout": args.timeout,
            "artifact_format": args.format,
            "artifacts_dir": args.out,
        })
    return overrides


def main():
    """Main CLI entry point for solbuild commands."""
    try:
        solbuild_version = get_version("solbuild")
    except PackageNotFoundError:
        solbuild_version = "dev"

    parser = argparse.ArgumentParser(
        prog="solbuild",
        description="solbuild: incremental, parallel builds for multi-file Solidity projects"
    )
    parser.add_argument("--version", action="version", version=f"solbuild {solbuild_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--root",
        type=Path,
        default=Path("."),
        help="Project root (defaults to the current directory)"
    )
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )
    parent_parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for structured logs on stderr"
    )
    parent_parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines"
    )

    resolve_parser = argparse.ArgumentParser(add_help=False)
    resolve_parser.add_argument(
        "--compiler-version",
        default=None,
        help="Pin one compiler version for the whole project (default: from pragmas)"
    )
    resolve_parser.add_argument(
        "--offline",
        action="store_true",
        help="Only use installed compilers"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # build command
    build_parser = subparsers.add_parser(
        "build",
        help="Compile the project",
        parents=[parent_parser, resolve_parser]
    )
    build_parser.add_argument(
        "--force",
        action="store_true",
        help="Recompile every job, ignoring cache hits"
    )
    build_parser.add_argument(
        "--jobs",
        type=int,
        default=None,
        help="Maximum concurrent compiler processes (default: CPU count)"
    )
    build_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Global build timeout in seconds"
    )
    build_parser.add_argument(
        "--job-timeout",
        type=float,
        default=None,
        help="Per-job timeout in seconds"
    )
    build_parser.add_argument(
        "--format",
        choices=["full", "minimal", "hardhat"],
        default=None,
        help="Artifact file format"
    )
    build_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Directory to write artifact files to (relative to --root)"
    )
    build_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the build result as JSON on stdout"
    )

    # plan command
    plan_parser = subparsers.add_parser(
        "plan",
        help="Show components, resolved versions and cache state without compiling",
        parents=[parent_parser, resolve_parser]
    )
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the plan as JSON on stdout"
    )

    # clean command
    subparsers.add_parser(
        "clean",
        help="Remove the build cache and artifacts directory",
        parents=[parent_parser]
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from ._internal.logging import configure_logging
    configure_logging(args.log_level, json_output=args.json_logs)

    # Lazy imports: the kernel is only loaded once a command runs
    from .config import load_build_request
    from .kernel.errors import SolbuildError
    from ._internal.canonical_json import canonical_dumps

    try:
        request = load_build_request(args.root, _build_overrides(args))

        if args.command == "build":
            from .api import build

            result = build(request)
            if args.json:
                print(canonical_dumps(result.model_dump(mode="json")))
            elif not args.quiet:
                for diagnostic in result.diagnostics:
                    print(_format_diagnostic(diagnostic), file=sys.stderr)
                status = "OK" if result.ok else "FAILED"
                print(f"[{status}] Build complete")
                print(f"  Jobs: {len(result.jobs)} (cache hits: {result.cache_hits}, compiled: {result.compiled})")
                print(f"  Artifacts: {len(result.artifacts)}")
                print(f"  Errors: {len(result.errors)}")
                print(f"  Warnings: {len(result.warnings)}")
            sys.exit(0 if result.ok else 1)

        elif args.command == "plan":
            from .api import plan

            build_plan = plan(request)
            if args.json:
                print(canonical_dumps(build_plan.model_dump(mode="json")))
            elif not args.quiet:
                for diagnostic in build_plan.warnings:
                    print(_format_diagnostic(diagnostic), file=sys.stderr)
                print(f"[OK] {build_plan.files} files, {len(build_plan.jobs)} jobs, {len(build_plan.dirty)} dirty")
                for job in build_plan.jobs:
                    state = "cached" if job.cached else "dirty"
                    pin = " (pinned)" if job.pinned else ""
                    print(f"  job {job.index}: solc {job.version}{pin} [{state}] {job.fingerprint[:19]}")
                    print(f"    constraint: {job.constraint}")
                    for source in job.sources:
                        print(f"    - {source}")
            sys.exit(0)

        elif args.command == "clean":
            from .api import clean

            removed = clean(request)
            if not args.quiet:
                print("[OK] Clean complete")
                for path in removed:
                    print(f"  Removed: {path}")
            sys.exit(0)

        else:
            parser.print_help()
            sys.exit(1)
    except SolbuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
