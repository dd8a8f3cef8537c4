from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .backends import default_registry
from .backends.base import BackendRegistry
from .config import ProvisionerConfig, load_config
from .declarations import load_declarations
from .errors import BackendConfigError, PlanError, ValidationError
from .executor import ExecutionPolicy
from .logging_utils import configure_logging
from .pipeline import converge, plan_run
from .planner import Plan
from .report import render_text, save_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NOT_CONVERGED = 1
EXIT_VALIDATION = 3
EXIT_PLAN = 4


def render_plan(plan: Plan) -> str:
    lines = [
        f"{a.type.value:<8} {a.resource.kind.value:<14} {a.resource.identifier}  ({a.reason})"
        for a in plan.actions
    ]
    lines.append("")
    lines.append(f"{len(plan.changes)} change(s), {len(plan.actions) - len(plan.changes)} already satisfied")
    return "\n".join(lines) + "\n"


def run(
    *,
    declarations_path: str,
    config: ProvisionerConfig,
    policy: ExecutionPolicy,
    include: Optional[List[str]] = None,
    report_path: Optional[str] = None,
    plan_only: bool = False,
    registry: Optional[BackendRegistry] = None,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Load declarations, converge, print the report. Returns the exit code."""

    registry = registry or default_registry(config)

    try:
        declarations = load_declarations(declarations_path)
        if plan_only:
            planned = plan_run(
                declarations,
                registry,
                include=include,
                query_timeout=config.query_timeout,
                concurrency=policy.concurrency,
            )
            sys.stdout.write(render_plan(planned.plan))
            return EXIT_OK

        result = converge(
            declarations,
            registry,
            policy=policy,
            include=include,
            query_timeout=config.query_timeout,
            cancel=cancel,
        )
    except ValidationError as e:
        logger.error("Validation failed: %s", e)
        sys.stderr.write(f"{e}\n")
        return EXIT_VALIDATION
    except (PlanError, BackendConfigError) as e:
        logger.error("Cannot plan: %s", e)
        sys.stderr.write(f"error: {e}\n")
        return EXIT_PLAN

    sys.stdout.write(render_text(result.report))
    if report_path:
        save_report(report_path, result.report)
        logger.info("Report written to %s", report_path)

    return EXIT_OK if result.report.converged else EXIT_NOT_CONVERGED


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="alpine-provision",
        description="Converge an Alpine system onto a declared set of packages, services, repositories, files and firewall rules.",
    )
    p.add_argument("declarations", help="Declaration document (yaml|json)")
    p.add_argument("--config", default=None, help="Provisioner settings (yaml)")
    p.add_argument("--log", default=None, help="Path to the provisioner log")
    p.add_argument("--root", default=None, help="Target root for apk, files and repositories")
    p.add_argument("--dry-run", action="store_true", help="Report what would change; apply nothing")
    p.add_argument("--plan-only", action="store_true", help="Print the plan and exit")
    p.add_argument("--stop-on-failure", action="store_true", help="Start no new actions after the first failure")
    p.add_argument("--concurrency", type=int, default=None, help="Max actions running at once")
    p.add_argument("--timeout", type=float, default=None, help="Seconds per backend call")
    p.add_argument(
        "--include",
        action="append",
        default=[],
        metavar="ID",
        help="Install an optional resource (kind:identifier or identifier); repeatable",
    )
    p.add_argument("--include-all-optional", action="store_true", help="Install every optional resource")
    p.add_argument("--report", default=None, help="Also write the report to this path (json|yaml)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        sys.stderr.write(f"error: cannot read config: {e}\n")
        return EXIT_VALIDATION

    if args.root:
        config = ProvisionerConfig(raw={**config.raw, "root": args.root})

    configure_logging(
        log_path=args.log or config.log_path,
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    policy = ExecutionPolicy(
        stop_on_first_failure=bool(args.stop_on_failure or config.stop_on_first_failure),
        dry_run=bool(args.dry_run),
        concurrency=max(1, args.concurrency or config.concurrency),
        timeout=args.timeout or config.timeout,
    )

    cancel = threading.Event()

    def _on_signal(signum, frame):  # type: ignore[no-untyped-def]
        logger.warning("Signal %s received; finishing in-flight actions", signum)
        cancel.set()

    previous = {s: signal.signal(s, _on_signal) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        return run(
            declarations_path=args.declarations,
            config=config,
            policy=policy,
            include="*" if args.include_all_optional else args.include,
            report_path=args.report,
            plan_only=bool(args.plan_only),
            cancel=cancel,
        )
    except Exception:
        logger.exception("Provisioner failed")
        raise
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)


if __name__ == "__main__":
    raise SystemExit(main())
