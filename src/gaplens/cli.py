"""
Command-line interface for Gaplens.

Reads an organisation either from a dataset file (--dataset, JSON or YAML)
or from the configured REST backend, and prints compliance views as JSON
or as plain-text tables.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, NoReturn

from gaplens import __version__
from gaplens.config.settings import ConfigurationError, Settings, load_config
from gaplens.errors import EngineError

logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False

TOKEN_ENV_VAR = "GAPLENS_BACKEND_TOKEN"


def set_output_mode(quiet: bool = False) -> None:
    """Set whether non-essential output is suppressed."""
    global _quiet_mode
    _quiet_mode = quiet


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def output_json(data: Any) -> None:
    output(json.dumps(data, indent=2, default=str), force=True)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the Gaplens CLI."""
    parser = argparse.ArgumentParser(
        prog="gaplens",
        description="Compliance aggregation and gap analysis across an organisation",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"gaplens {__version__}",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.gaplens/config.yaml)",
    )
    parser.add_argument(
        "--dataset",
        metavar="FILE",
        help="Read the organisation from a JSON or YAML dataset instead of the backend",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # score command
    score_parser = subparsers.add_parser(
        "score",
        help="Show one system's compliance score",
    )
    score_parser.add_argument("system_id", metavar="SYSTEM")
    score_parser.set_defaults(func=cmd_score)

    # product command
    product_parser = subparsers.add_parser(
        "product",
        help="Show a product's compliance and per-system scores",
    )
    product_parser.add_argument("product_id", metavar="PRODUCT")
    product_parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="json",
        help="Output format (default: json)",
    )
    product_parser.set_defaults(func=cmd_product)

    # functions command
    functions_parser = subparsers.add_parser(
        "functions",
        help="Show compliance per CSF function and category",
    )
    functions_parser.add_argument(
        "--product",
        metavar="ID",
        help="Restrict to one product (default: every product with a baseline)",
    )
    functions_parser.set_defaults(func=cmd_functions)

    # gaps command
    gaps_parser = subparsers.add_parser(
        "gaps",
        help="Show a product's prioritized gaps",
    )
    gaps_parser.add_argument("product_id", metavar="PRODUCT")
    gaps_parser.add_argument(
        "--top",
        type=int,
        metavar="N",
        help="Number of gaps to list (default: gaps.top_n from config)",
    )
    gaps_parser.add_argument(
        "--function",
        metavar="ID",
        help="Only list gaps in this CSF function",
    )
    gaps_parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="json",
        help="Output format (default: json)",
    )
    gaps_parser.set_defaults(func=cmd_gaps)

    # matrix command
    matrix_parser = subparsers.add_parser(
        "matrix",
        help="Show a product's controls x systems matrix",
    )
    matrix_parser.add_argument("product_id", metavar="PRODUCT")
    matrix_parser.add_argument("--function", metavar="ID", help="Filter rows by CSF function")
    matrix_parser.add_argument(
        "--status",
        metavar="STATUS",
        help="Keep rows where any system has this status",
    )
    matrix_parser.add_argument("--search", metavar="TEXT", help="Filter rows by code or name")
    matrix_parser.set_defaults(func=cmd_matrix)

    # hierarchy command
    hierarchy_parser = subparsers.add_parser(
        "hierarchy",
        help="Show the organisation rollup with scores",
    )
    hierarchy_parser.set_defaults(func=cmd_hierarchy)

    # frameworks command
    frameworks_parser = subparsers.add_parser(
        "frameworks",
        help="Show frameworks merged by name across capability centres",
    )
    frameworks_parser.set_defaults(func=cmd_frameworks)

    # attention command
    attention_parser = subparsers.add_parser(
        "attention",
        help="Show unassessed and below-threshold systems",
    )
    attention_parser.set_defaults(func=cmd_attention)

    # risk command
    risk_parser = subparsers.add_parser(
        "risk",
        help="Show scored remediation priorities",
    )
    risk_parser.add_argument("--product", metavar="ID", help="Restrict to one product")
    risk_parser.add_argument(
        "--heat-map",
        action="store_true",
        help="Show the function x system heat map (requires --product)",
    )
    risk_parser.set_defaults(func=cmd_risk)

    # trend command
    trend_parser = subparsers.add_parser(
        "trend",
        help="Show a product's daily compliance trend",
    )
    trend_parser.add_argument("product_id", metavar="PRODUCT")
    trend_parser.add_argument(
        "--days",
        type=int,
        default=30,
        metavar="N",
        help="Days of history to include (default: 30)",
    )
    trend_parser.set_defaults(func=cmd_trend)

    # templates command
    templates_parser = subparsers.add_parser(
        "templates",
        help="List baseline templates",
    )
    templates_parser.set_defaults(func=cmd_templates)

    # assess command
    assess_parser = subparsers.add_parser(
        "assess",
        help="Record an assessment for one system and control",
        description="Create or update the assessment of a (system, control) pair. "
        "With --dataset the file is rewritten on success.",
    )
    assess_parser.add_argument("system_id", metavar="SYSTEM")
    assess_parser.add_argument("control_id", metavar="CONTROL")
    assess_parser.add_argument("--status", required=True, help="New status")
    assess_parser.add_argument("--risk", metavar="LEVEL", help="Risk level (Low..Critical)")
    assess_parser.add_argument("--notes", help="Assessment notes")
    assess_parser.add_argument("--remediation", metavar="PLAN", help="Remediation plan")
    assess_parser.set_defaults(func=cmd_assess)

    # apply-template command
    apply_parser = subparsers.add_parser(
        "apply-template",
        help="Replace a product's baseline with a template",
    )
    apply_parser.add_argument("product_id", metavar="PRODUCT")
    apply_parser.add_argument("template_id", metavar="TEMPLATE")
    apply_parser.set_defaults(func=cmd_apply_template)

    # demo command
    demo_parser = subparsers.add_parser(
        "demo",
        help="Generate a demo organisation dataset",
    )
    demo_parser.add_argument(
        "--profile",
        choices=["startup", "growing", "mature"],
        default="growing",
        help="Organisation profile (default: growing)",
    )
    demo_parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    demo_parser.add_argument(
        "--days",
        type=int,
        default=30,
        metavar="N",
        help="Spread of assessment dates in days (default: 30)",
    )
    demo_parser.add_argument(
        "--output",
        metavar="FILE",
        help="Write the dataset to FILE (JSON or YAML by extension) instead of stdout",
    )
    demo_parser.set_defaults(func=cmd_demo)

    return parser


def setup_logging(verbose: int, quiet: bool, level_name: str = "INFO") -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose > 0:
        level = logging.DEBUG
    else:
        level = getattr(logging, level_name.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_repository(args: argparse.Namespace, settings: Settings):
    """
    Create the repository the command reads from.

    Raises:
        ConfigurationError: If neither a dataset nor a backend is configured.
    """
    from gaplens.storage import HttpRepository, InMemoryRepository

    if args.dataset:
        return InMemoryRepository.load(args.dataset)
    if settings.backend.url:
        return HttpRepository(
            settings.backend.url,
            token=os.environ.get(TOKEN_ENV_VAR),
            timeout=settings.backend.timeout,
            max_retries=settings.backend.max_retries,
        )
    raise ConfigurationError("No data source: pass --dataset FILE or configure backend.url")


def build_engine(args: argparse.Namespace):
    from gaplens.engine import ComplianceEngine

    settings: Settings = args.settings
    return ComplianceEngine(build_repository(args, settings), settings=settings)


def _persist(args: argparse.Namespace, engine: Any) -> None:
    """Write a dataset-backed repository back to its file."""
    if args.dataset:
        engine.repository.save(args.dataset)
        logger.info("Saved dataset to %s", args.dataset)


def cmd_score(args: argparse.Namespace) -> int:
    """Show one system's compliance score."""
    engine = build_engine(args)
    output_json(engine.compute_system_score(args.system_id).to_dict())
    return 0


def cmd_product(args: argparse.Namespace) -> int:
    """Show a product's compliance."""
    engine = build_engine(args)
    compliance = engine.compute_product_compliance(args.product_id)

    if args.format == "json":
        output_json(compliance.to_dict())
        return 0

    summary = compliance.summary
    output()
    output(f"Product Compliance: {compliance.product_name}")
    output("=" * 70)
    output(f"Compliance score: {summary.score}%")
    output(f"Coverage: {summary.coverage}%")
    output(f"Assessed controls: {summary.assessed_controls} of {summary.total_controls}")
    output()
    output("Systems:")
    for system_score in compliance.system_scores:
        s = system_score.summary
        output(
            f"  {system_score.system_name:<30} {s.score:>3}%  "
            f"({s.assessed_controls}/{s.total_controls} assessed)"
        )
    output()
    output("Gaps by risk:")
    for level, count in compliance.risk_breakdown.items():
        output(f"  {level}: {count}")
    return 0


def cmd_functions(args: argparse.Namespace) -> int:
    """Show compliance per function."""
    engine = build_engine(args)
    output_json([f.to_dict() for f in engine.compute_function_compliance(args.product)])
    return 0


def cmd_gaps(args: argparse.Namespace) -> int:
    """Show gap analysis."""
    engine = build_engine(args)
    analysis = engine.get_gap_analysis(args.product_id, top_n=args.top)

    gaps_to_show = analysis.gaps
    if args.function:
        func_filter = args.function.upper()
        gaps_to_show = [g for g in gaps_to_show if g.function_id == func_filter]

    if args.format == "json":
        data = analysis.to_dict()
        data["gaps"] = [g.to_dict() for g in gaps_to_show]
        output_json(data)
        return 0

    output()
    output(f"Gap Analysis: {args.product_id}")
    output("=" * 70)
    output(f"Controls with gaps: {analysis.total_gaps}")
    output(f"Gap records: {analysis.total_gap_records}")
    output(f"Critical: {analysis.critical_gaps}  High: {analysis.high_risk_gaps}")
    output()
    if gaps_to_show:
        output("Gaps:")
        output("-" * 70)
        for gap in gaps_to_show:
            output(f"\n{gap.control_id}: {gap.control_name}")
            output(f"  Risk: {gap.risk_level.value}")
            output(f"  Systems affected: {gap.systems_affected}")
        if analysis.total_gaps > len(analysis.gaps):
            output(f"\n... and {analysis.total_gaps - len(analysis.gaps)} more gaps")
    else:
        output("No gaps found.")
    return 0


def cmd_matrix(args: argparse.Namespace) -> int:
    """Show the assessment matrix."""
    from gaplens.analysis import MatrixFilter
    from gaplens.storage import AssessmentStatus

    engine = build_engine(args)
    matrix = engine.get_assessment_matrix(args.product_id)
    criteria = MatrixFilter(
        function_id=args.function,
        status=AssessmentStatus.parse(args.status) if args.status else None,
        search=args.search,
    )
    output_json(matrix.to_dict(rows=matrix.filter(criteria)))
    return 0


def cmd_hierarchy(args: argparse.Namespace) -> int:
    """Show the organisation rollup."""
    engine = build_engine(args)
    output_json(engine.get_organizational_hierarchy_with_scores().to_dict())
    return 0


def cmd_frameworks(args: argparse.Namespace) -> int:
    """Show the cross-centre framework summary."""
    engine = build_engine(args)
    output_json([s.to_dict() for s in engine.get_framework_summary()])
    return 0


def cmd_attention(args: argparse.Namespace) -> int:
    """Show systems that need attention."""
    engine = build_engine(args)
    output_json(engine.get_attention_required().to_dict())
    return 0


def cmd_risk(args: argparse.Namespace) -> int:
    """Show risk priorities or the heat map."""
    if args.heat_map and not args.product:
        output_error("--heat-map requires --product")
        return 1

    engine = build_engine(args)
    if args.heat_map:
        output_json(engine.get_risk_heat_map(args.product).to_dict())
    else:
        output_json(engine.get_risk_summary(args.product).to_dict())
    return 0


def cmd_trend(args: argparse.Namespace) -> int:
    """Show the compliance trend."""
    engine = build_engine(args)
    output_json(engine.get_compliance_trend(args.product_id, days=args.days).to_dict())
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    """List baseline templates."""
    from gaplens.catalog import BASELINE_TEMPLATES, get_default_catalog

    catalog = get_default_catalog()
    output_json([t.to_dict(catalog) for t in BASELINE_TEMPLATES.values()])
    return 0


def cmd_assess(args: argparse.Namespace) -> int:
    """Create or update one assessment."""
    engine = build_engine(args)
    patch: dict[str, Any] = {"status": args.status}
    if args.risk:
        patch["risk_level"] = args.risk
    if args.notes is not None:
        patch["notes"] = args.notes
    if args.remediation is not None:
        patch["remediation_plan"] = args.remediation

    outcome = engine.save_assessment(args.system_id, args.control_id, patch)
    if not outcome.confirmed:
        output_error(f"Save failed: {outcome.error}")
        return 1

    _persist(args, engine)
    output_json(outcome.value.to_dict())
    return 0


def cmd_apply_template(args: argparse.Namespace) -> int:
    """Apply a baseline template to a product."""
    engine = build_engine(args)
    outcome = engine.apply_baseline_template(args.product_id, args.template_id)
    if not outcome.confirmed:
        output_error(f"Baseline update failed: {outcome.error}")
        return 1

    _persist(args, engine)
    output(f"Applied template {args.template_id} to {args.product_id}: "
           f"{len(outcome.value)} controls")
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    """Generate a demo dataset."""
    from gaplens.demo import generate_demo_dataset
    from gaplens.storage import InMemoryRepository

    dataset = generate_demo_dataset(seed=args.seed, profile=args.profile, days=args.days)
    if not args.output:
        output_json(dataset)
        return 0

    InMemoryRepository.from_dict(dataset).save(Path(args.output))
    output(f"Demo dataset written to {args.output}")
    output()
    output("Next steps:")
    output(f"  gaplens --dataset {args.output} hierarchy")
    output(f"  gaplens --dataset {args.output} gaps prod-payments")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the Gaplens CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    set_output_mode(args.quiet)

    try:
        args.settings = load_config(Path(args.config) if args.config else None)
    except ConfigurationError as e:
        setup_logging(args.verbose, args.quiet)
        output_error(f"Configuration error: {e}")
        sys.exit(2)

    setup_logging(args.verbose, args.quiet, args.settings.log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except EngineError as e:
        output_error(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
