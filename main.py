"""
WAYFINDER MAIN - Entry Point and CLI

Commands:
    evaluate    - Evaluate one or more life events against a context file
    life-events - List the life events in a catalog
    service     - Show one service with its graph context
    check       - Validate a catalog and report every defect

Usage:
    # Evaluate the "baby" journey for the facts in context.json
    python main.py evaluate --life-event baby --context context.json

    # Several life events at once, explicit catalog, compact output
    python main.py evaluate -l baby -l job-loss --catalog catalog.json --compact

    # List life events
    python main.py life-events --catalog catalog.json

    # Validate a catalog
    python main.py check catalog.json

Context File Format (JSON, every key optional):
    {
      "facts": {"age": 31, "nation": "england", "savings": 2000},
      "custom": {"has_joint_account": true},
      "trigger_dates": {"birth": "2026-10-01"},
      "services": {"gro-register-birth": "completed"},
      "today": "2026-10-18"
    }
"""
import sys
import json
import logging
from pathlib import Path
from typing import Optional

# Add wayfinder to path for imports
sys.path.insert(0, str(Path(__file__).parent))


logger = logging.getLogger("wayfinder")


def _load_config(args):
    from infrastructure.config import load_engine_config
    return load_engine_config(getattr(args, "config", None))


def _load_catalog(args, config):
    from infrastructure.catalog_loader import load_catalog_file

    catalog_path: Optional[str] = getattr(args, "catalog", None) or config.catalog_path
    if not catalog_path:
        print("Error: no catalog given (use --catalog or set catalog_path in wayfinder.toml)")
        sys.exit(2)
    return load_catalog_file(catalog_path)


def _print_json(data: bytes, compact: bool) -> None:
    if compact:
        print(data.decode("utf-8"))
    else:
        print(json.dumps(json.loads(data), indent=2))


def cmd_evaluate(args, config):
    """Handle evaluate command - one stateless traversal, JSON out."""
    import msgspec
    from core.session import Snapshot
    from core.traversal import evaluate_life_event
    from core.schemas import serialize_report

    catalog = _load_catalog(args, config)

    payload = {}
    if args.context:
        payload = msgspec.json.decode(Path(args.context).read_bytes())
    snapshot = Snapshot.from_payload(payload)

    report = evaluate_life_event(catalog, snapshot, args.life_event, config)
    _print_json(serialize_report(report), args.compact)


def cmd_life_events(args, config):
    """Handle life-events command."""
    catalog = _load_catalog(args, config)
    for evt in catalog.iter_life_events():
        print(f"{evt.id:<24} {evt.name}  ({len(evt.entry_nodes)} entry services)")


def cmd_service(args, config):
    """Handle service command - one service and its neighbours."""
    import msgspec

    catalog = _load_catalog(args, config)
    context = catalog.service_context(args.service_id)
    _print_json(msgspec.json.encode(context), args.compact)


def cmd_check(args, config):
    """Handle check command - validate and report."""
    from infrastructure.catalog_loader import CatalogValidationError, load_catalog_file

    try:
        catalog = load_catalog_file(args.catalog_file)
    except CatalogValidationError as e:
        print(f"INVALID: {len(e.defects)} defect(s)")
        for defect in e.defects:
            print(f"  {defect}")
        sys.exit(1)
    print(f"OK: {catalog!r}")


def main():
    """Main entry point with subcommands."""
    import argparse

    import msgspec
    from core.catalog import CatalogError

    parser = argparse.ArgumentParser(
        description="Wayfinder - UK government services eligibility engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to wayfinder.toml (default: $WAYFINDER_CONFIG or bundled)")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # evaluate command
    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate life events against a context")
    evaluate_parser.add_argument("--life-event", "-l", action="append", required=True,
                                 help="Life event id (repeatable)")
    evaluate_parser.add_argument("--context", "-c", help="Path to context JSON file")
    evaluate_parser.add_argument("--catalog", help="Path to catalog JSON file")
    evaluate_parser.add_argument("--compact", action="store_true", help="Single-line JSON output")
    evaluate_parser.set_defaults(func=cmd_evaluate)

    # life-events command
    events_parser = subparsers.add_parser("life-events", help="List life events")
    events_parser.add_argument("--catalog", help="Path to catalog JSON file")
    events_parser.set_defaults(func=cmd_life_events)

    # service command
    service_parser = subparsers.add_parser("service", help="Show a service with its graph context")
    service_parser.add_argument("service_id", help="Service id")
    service_parser.add_argument("--catalog", help="Path to catalog JSON file")
    service_parser.add_argument("--compact", action="store_true", help="Single-line JSON output")
    service_parser.set_defaults(func=cmd_service)

    # check command
    check_parser = subparsers.add_parser("check", help="Validate a catalog file")
    check_parser.add_argument("catalog_file", help="Path to catalog JSON file")
    check_parser.set_defaults(func=cmd_check)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(2)

    config = _load_config(args)
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        args.func(args, config)
    except CatalogError as e:
        logger.error("%s", e)
        sys.exit(1)
    except (ValueError, OSError, msgspec.DecodeError) as e:
        # Unreadable files and malformed context payloads
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
