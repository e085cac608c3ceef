"""Command-line entry point for zonectl."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

from . import registry as rtype_registry
from .config import AppConfig, load_config, load_credentials
from .controller import DomainPlan, Reconciler, configure_logging, initialize_providers
from .errors import ConfigurationError, ZonectlError
from .exporter import records_to_document, to_json, to_yaml, write_document
from .loader import load_document
from .lowering import import_raw_records
from .models import DomainConfig
from .providers import DEFAULT_REGISTRY, ZoneLister
from .spf import build_resolver
from .transform import apply_import_transforms
from .validate import check_apex_nameservers, check_records, normalize_domain

LOG = logging.getLogger("zonectl")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PENDING = 2


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Reconcile declarative DNS configuration with DNS providers.")
    parser.add_argument("--log-level", help="Override log level (default from config).")

    subparsers = parser.add_subparsers(dest="command", required=True)
    preview_parser = subparsers.add_parser("preview", help="Show the corrections a push would make.")
    _register_common_arguments(preview_parser)

    push_parser = subparsers.add_parser("push", help="Apply corrections to providers and registrars.")
    _register_common_arguments(push_parser)
    push_parser.add_argument("--timeout", type=float, help="Stop starting new corrections after N seconds.")
    push_parser.add_argument("--no-populate", action="store_true", help="Do not create missing zones.")

    check_parser = subparsers.add_parser("check", help="Validate the document without contacting providers.")
    check_parser.add_argument("--config", required=True, help="Path to the desired-state document.")
    check_parser.add_argument("--domains", help="Comma-separated list of domains to check.")
    _register_var_argument(check_parser)

    zones_parser = subparsers.add_parser("get-zones", help="Export live zones from a provider.")
    zones_parser.add_argument("--creds", help="Path to the credentials file (default from config).")
    zones_parser.add_argument("provider", help="Credentials entry naming the provider.")
    zones_parser.add_argument("zones", nargs="+", help="Zone names, or 'all' to list the provider's zones.")
    zones_parser.add_argument("--output", help="Path to write the exported document (default stdout).")
    zones_parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Serialization format for the exported document.",
    )
    return parser


def _register_var_argument(subparser: argparse.ArgumentParser) -> None:
    """Add the repeatable ``-e KEY=VALUE`` template variable option."""
    subparser.add_argument(
        "-e",
        "--var",
        action="append",
        help="Template variable in KEY=VALUE form. Can be repeated.",
    )


def _register_common_arguments(subparser: argparse.ArgumentParser) -> None:
    """Register arguments shared by preview/push."""
    subparser.add_argument("--config", required=True, help="Path to the desired-state document.")
    subparser.add_argument("--creds", help="Path to the credentials file (default from config).")
    subparser.add_argument("--domains", help="Comma-separated list of domains to reconcile.")
    _register_var_argument(subparser)


def _parse_template_vars(values: List[str] | None) -> Dict[str, str]:
    """Convert KEY=VALUE pairs into a dict."""
    result: Dict[str, str] = {}
    if not values:
        return result
    for value in values:
        if "=" not in value:
            raise ConfigurationError(f"Invalid template var '{value}', expected KEY=VALUE.")
        key, val = value.split("=", 1)
        result[key] = val
    return result


def _select_domains(domains: List[DomainConfig], selection: str | None) -> List[DomainConfig]:
    """Keep only the domains named in a comma-separated filter."""
    if not selection:
        return domains
    wanted = {name.strip().rstrip(".").lower() for name in selection.split(",") if name.strip()}
    known = {dc.name for dc in domains} | {dc.unique_name for dc in domains}
    unknown = wanted - known
    if unknown:
        raise ConfigurationError(f"--domains names unknown domain(s): {', '.join(sorted(unknown))}")
    return [dc for dc in domains if dc.name in wanted or dc.unique_name in wanted]


def _load_domains(args: argparse.Namespace) -> List[DomainConfig]:
    """Load the document and apply the ``--domains`` filter."""
    domains = load_document(Path(args.config), _parse_template_vars(args.var))
    return _select_domains(domains, args.domains)


def _reconciler(config: AppConfig, args: argparse.Namespace, domains: List[DomainConfig]) -> Reconciler:
    """Build a Reconciler with providers from the credentials file."""
    credentials = load_credentials(Path(args.creds) if args.creds else config.creds_file)
    dns_providers, registrars = initialize_providers(domains, credentials, DEFAULT_REGISTRY)
    resolver = build_resolver(config.spf_live, config.spf_cache)
    return Reconciler(config, DEFAULT_REGISTRY, dns_providers, registrars, resolver=resolver, printer=print)


def _emit_plans(plans: Sequence[DomainPlan]) -> None:
    """Print the corrections of every plan."""
    for plan in plans:
        print(f"******************** Domain: {plan.name}")
        for warning in plan.warnings:
            print(f"WARNING: {warning}")
        for error in plan.errors:
            print(f"ERROR: {error}")
        provider_plans = plan.dsp_plans + ([plan.registrar_plan] if plan.registrar_plan else [])
        for provider_plan in provider_plans:
            print(f"----- {provider_plan.provider}")
            if provider_plan.error is not None:
                print(f"ERROR: {provider_plan.error}")
                continue
            for index, correction in enumerate(provider_plan.corrections, start=1):
                print(f"#{index}: {correction.msg}")
            if not provider_plan.actionable:
                print("No changes detected.")


def _run_preview(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the preview command."""
    domains = _load_domains(args)
    reconciler = _reconciler(config, args, domains)
    try:
        plans = reconciler.plan(domains, populate=False)
    finally:
        reconciler.close()
    _emit_plans(plans)
    if any(plan.all_errors() for plan in plans):
        return EXIT_ERROR
    total = sum(plan.correction_count() for plan in plans)
    print(f"Done. {total} correction(s).")
    return EXIT_PENDING if total else EXIT_OK


def _run_push(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the push command."""
    if args.timeout is not None:
        config = dataclasses.replace(config, timeout=args.timeout)
    domains = _load_domains(args)
    reconciler = _reconciler(config, args, domains)
    previous = signal.signal(signal.SIGINT, lambda signum, frame: reconciler.cancel())
    try:
        plans = reconciler.plan(domains, populate=config.populate and not args.no_populate)
        for plan in plans:
            for error in plan.all_errors():
                print(f"ERROR: {plan.name}: {error}")
        report = reconciler.execute(plans)
    finally:
        signal.signal(signal.SIGINT, previous)
        reconciler.close()
    for domain in report.skipped_registrars:
        print(f"WARNING: {domain}: registrar corrections skipped")
    if report.cancelled:
        print("Cancelled before all corrections ran.")
    report.raise_for_errors()
    done = sum(report.executed.change_count(provider) for provider in report.executed.providers())
    print(f"Done. {done} correction(s) applied.")
    return EXIT_OK


def _run_check(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the check command."""
    domains = _load_domains(args)
    import_raw_records(domains)
    apply_import_transforms(domains)
    failed = False
    for dc in domains:
        normalize_domain(dc, config.default_ttl)
        for issue in check_apex_nameservers(dc) + check_records(dc):
            failed = failed or issue.fatal
            print(f"{'ERROR' if issue.fatal else 'WARNING'}: {dc.unique_name}: {issue}")
    if failed:
        return EXIT_ERROR
    print(f"Checked {len(domains)} domain(s).")
    return EXIT_OK


def _run_get_zones(config: AppConfig, args: argparse.Namespace) -> int:
    """Execute the get-zones command."""
    credentials = load_credentials(Path(args.creds) if args.creds else config.creds_file)
    creds = credentials.get(args.provider)
    if creds is None:
        raise ConfigurationError(f"no credentials entry named {args.provider!r}")
    provider = DEFAULT_REGISTRY.create_dns_provider("-", creds)
    zones: List[str] = list(args.zones)
    if zones == ["all"]:
        if not isinstance(provider, ZoneLister):
            raise ConfigurationError(f"{args.provider} cannot list its zones; name them explicitly")
        zones = provider.list_zones()

    document: Dict[str, Any] = {"domains": []}
    for zone in zones:
        records = provider.get_zone_records(zone, {})
        document["domains"].extend(records_to_document(zone, records)["domains"])
    content = to_json(document) if args.format == "json" else to_yaml(document)
    if args.output:
        write_document(Path(args.output), content)
        print(f"Wrote {len(zones)} zone(s) to {args.output}")
    else:
        print(content)
    return EXIT_OK


COMMANDS = {
    "preview": _run_preview,
    "push": _run_push,
    "check": _run_check,
    "get-zones": _run_get_zones,
}


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level)
        rtype_registry.freeze()
        DEFAULT_REGISTRY.freeze()
        code = COMMANDS[args.command](config, args)
    except ZonectlError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except Exception as exc:  # noqa: BLE001
        LOG.debug("Unexpected failure", exc_info=True)
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    sys.exit(code)


if __name__ == "__main__":
    main()
