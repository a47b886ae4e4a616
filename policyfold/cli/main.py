from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from policyfold.core.config import ConversionOptions
from policyfold.core.errors import ConversionError
from policyfold.core.pipeline import convert_policy_set
from policyfold.core.policy_set import describe_policy_set, load_policy_set
from policyfold.utils.json_safe import to_jsonable
from policyfold.utils.paths import converted_output_path

log = logging.getLogger("policyfold.cli")


def _print_json(obj: object) -> None:
    """Print JSON to stdout."""
    print(json.dumps(to_jsonable(obj), indent=2, sort_keys=True))


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(message)s", stream=sys.stderr)


def _read_input(path: str) -> str | None:
    source = Path(path)
    if not source.is_file():
        print(f"error: file not found: {source}", file=sys.stderr)
        return None
    return source.read_text(encoding="utf-8")


def _options_from_args(args: argparse.Namespace) -> ConversionOptions:
    defaults = ConversionOptions.from_env()
    return ConversionOptions(
        remove_unreferenced_objects=args.remove_unreferenced_objects or defaults.remove_unreferenced_objects,
        tokenize_tenant_id=args.tokenize_tenant_id or defaults.tokenize_tenant_id,
        max_policy_bytes=(
            args.max_policy_bytes if args.max_policy_bytes is not None else defaults.max_policy_bytes
        ),
        tenant_domain=args.tenant_domain or defaults.tenant_domain,
    )


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert an exported user-flow policy set into a custom policy set.

    Security notes:
    - The output path may not leave the input file's directory.

    """

    _configure_logging(args.log_level)
    text = _read_input(args.path)
    if text is None:
        return 1

    try:
        out_path = converted_output_path(args.path, args.out)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        result = convert_policy_set(text, _options_from_args(args))
    except ConversionError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    log.info("Formatting final output and saving to the file system.")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(result.to_xml(), encoding="utf-8")
    log.info("Converted policyset written to '%s'", out_path)

    if args.report:
        report = result.report()
        report["output"] = str(out_path)
        _print_json(report)
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print the shape of a policy set (ids, tenants, base chain, sizes) as JSON."""

    _configure_logging(args.log_level)
    text = _read_input(args.path)
    if text is None:
        return 1
    try:
        tree = load_policy_set(text)
    except ConversionError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    _print_json(describe_policy_set(tree))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the policyfold API server.

    Security notes:
    - Bind to 127.0.0.1 by default (safer than 0.0.0.0).

    """

    try:
        import uvicorn
    except Exception as e:
        print(f"error: uvicorn is required to serve the API: {e}", file=sys.stderr)
        return 2

    try:
        from policyfold.api.server import create_app
    except Exception as e:
        print(f"error: API server dependencies missing: {e}", file=sys.stderr)
        return 2

    app = create_app()
    uvicorn.run(app, host=args.host, port=int(args.port), log_level=args.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser."""
    p = argparse.ArgumentParser(prog="policyfold", description="Convert exported B2C user flows to custom policies")
    sub = p.add_subparsers(dest="cmd", required=True)

    cp = sub.add_parser("convert", help="Convert an exported user-flow policy set")
    cp.add_argument("path", help="Path to the exported policy set XML")
    cp.add_argument("--out", default=None, help="Output path, relative to the input directory")
    cp.add_argument(
        "--remove-unreferenced-objects",
        action="store_true",
        help="Drop unsupported-language resources and objects nothing references",
    )
    cp.add_argument(
        "--tokenize-tenant-id",
        action="store_true",
        help="Replace tenant ids with the {{config.tenantDomain}} placeholder",
    )
    cp.add_argument(
        "--max-policy-bytes",
        type=int,
        default=None,
        help="Size budget per policy in bytes (0 disables splitting)",
    )
    cp.add_argument("--tenant-domain", default=None, help="Tenant domain to tokenize in the text")
    cp.add_argument("--report", action="store_true", help="Print a JSON conversion report")
    cp.add_argument("--log-level", default="info", help="Log level (default: info)")
    cp.set_defaults(func=cmd_convert)

    ip = sub.add_parser("inspect", help="Describe the policies in a policy set")
    ip.add_argument("path", help="Path to the policy set XML")
    ip.add_argument("--log-level", default="warning", help="Log level (default: warning)")
    ip.set_defaults(func=cmd_inspect)

    # --- API server ---
    sv = sub.add_parser("serve", help="Run the policyfold FastAPI server")
    sv.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    sv.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    sv.add_argument("--log-level", default="info", help="Uvicorn log level")
    sv.set_defaults(func=cmd_serve)

    return p


def main(argv: List[str] | None = None) -> int:
    """CLI entry."""
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
