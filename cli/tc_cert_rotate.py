#!/usr/bin/env python3
"""tc-cert-rotate: rotate a TLS certificate across Tencent Cloud CDN and EdgeOne.

Usage:
    tc-cert-rotate --fullchain-file fullchain.pem --key-file key.pem \\
        --domains "cdn.example.com
    zone-abc123 www.example.com"
    tc-cert-rotate rotate --account prod --domains-file domains.txt ...
    tc-cert-rotate account add | list | remove NAME
    tc-cert-rotate history [--cert-id ID] [--failures]

Environment variables (deploy-hook / CI mode):
    TENCENTCLOUD_SECRET_ID, TENCENTCLOUD_SECRET_KEY   API credentials
    CERT_FULLCHAIN_PATH, CERT_KEY_PATH                certificate files
    TC_CERT_DOMAINS                                   domain specification
Inside GitHub Actions the action inputs (INPUT_SECRET-ID, ...) are used.
"""

import argparse
import os
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

COMMANDS = ("rotate", "account", "history")


def _build_parser() -> argparse.ArgumentParser:
    from services.polling import DEFAULT_POLL_ATTEMPTS, DEFAULT_POLL_INTERVAL
    from services.rotation_service import DEFAULT_PROPAGATION_DELAY, TimeoutPolicy

    parser = argparse.ArgumentParser(
        prog="tc-cert-rotate",
        description="Tencent Cloud CDN / EdgeOne certificate rotation",
    )
    sub = parser.add_subparsers(dest="command")

    rotate = sub.add_parser("rotate", help="Upload a certificate and rotate bindings onto it (default)")
    rotate.add_argument("--secret-id", dest="secret_id", help="Tencent Cloud SecretId")
    rotate.add_argument("--secret-key", dest="secret_key", help="Tencent Cloud SecretKey")
    rotate.add_argument("--account", help="Stored account name (alternative to --secret-id/--secret-key)")
    rotate.add_argument("--region", help="API region header (optional)")
    rotate.add_argument("--fullchain-file", dest="fullchain_file", help="Path to certificate chain PEM")
    rotate.add_argument("--key-file", dest="key_file", help="Path to private key PEM")
    rotate.add_argument("--domains", help="Domain specification (multi-line)")
    rotate.add_argument("--domains-file", dest="domains_file", help="Read the domain specification from a file")
    rotate.add_argument("--alias", help="Name for the uploaded certificate")
    rotate.add_argument(
        "--propagation-delay", type=float, default=DEFAULT_PROPAGATION_DELAY,
        help=f"Seconds to wait between rebinding and deleting (default: {DEFAULT_PROPAGATION_DELAY:g})",
    )
    rotate.add_argument(
        "--poll-attempts", type=int, default=DEFAULT_POLL_ATTEMPTS,
        help=f"Status polls per rebind/delete task (default: {DEFAULT_POLL_ATTEMPTS})",
    )
    rotate.add_argument(
        "--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between status polls (default: {DEFAULT_POLL_INTERVAL:g})",
    )
    rotate.add_argument(
        "--on-rebind-timeout",
        choices=[p.value for p in TimeoutPolicy],
        default=TimeoutPolicy.SKIP_DELETE.value,
        help="What to do with an old certificate whose rebind timed out",
    )
    rotate.add_argument(
        "--fail-on-delete-timeout", action="store_true",
        help="Exit non-zero if the deletion tasks do not settle in time",
    )

    account = sub.add_parser("account", help="Manage stored Tencent Cloud accounts")
    account_sub = account.add_subparsers(dest="account_command", required=True)
    add = account_sub.add_parser("add", help="Add an account (prompts for missing values)")
    add.add_argument("--name")
    add.add_argument("--secret-id", dest="secret_id")
    add.add_argument("--region", default="")
    account_sub.add_parser("list", help="List stored accounts")
    remove = account_sub.add_parser("remove", help="Deactivate a stored account")
    remove.add_argument("name")

    history = sub.add_parser("history", help="Show recent operations from the audit log")
    history.add_argument("--cert-id", dest="cert_id", help="Only operations on this certificate id")
    history.add_argument("--failures", action="store_true", help="Only failed or timed-out operations")
    history.add_argument("--limit", type=int, default=25)

    return parser


def _normalize_argv(argv: List[str]) -> List[str]:
    """Default to the rotate command so the bare flags form keeps working."""
    if argv and (argv[0] in COMMANDS or argv[0] in ("-h", "--help")):
        return argv
    return ["rotate", *argv]


# ---------------------------------------------------------------------------
# rotate
# ---------------------------------------------------------------------------

def _write_action_outputs(report) -> None:
    path = os.environ.get("GITHUB_OUTPUT")
    if not path:
        return
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"cert-id={report.new_cert_id or ''}\n")
        f.write(f"old-cert-ids={','.join(report.old_cert_ids)}\n")
        f.write(f"deleted-cert-ids={','.join(report.deleted)}\n")


def _print_summary(log, report) -> None:
    log.info(f"✓ New certificate uploaded:   {report.new_cert_id}")
    log.info(f"✓ Old certificates found:     {len(report.old_cert_ids)}")
    log.info(f"✓ Bindings rotated:           {len(report.rebound)}")
    if report.rebind_timed_out:
        log.warning(f"Rebind timed out for:        {', '.join(report.rebind_timed_out)}")
    if report.deleted:
        log.info(f"✓ Old certificates deleted:   {', '.join(report.deleted)} ({report.delete_outcome.value})")
    if report.delete_skipped:
        log.warning(f"Certificates kept (rebind unconfirmed): {', '.join(report.delete_skipped)}")
    if report.delete_failed:
        log.warning(f"Certificates not deleted: {', '.join(report.delete_failed)}")


def cmd_rotate(args) -> int:
    from cli.inputs import read_text, resolve_inputs
    from lib.auth import TencentAuth
    from lib.cdn_client import CDNClient
    from lib.domain_spec import parse_domains
    from lib.errors import CertRotateError
    from lib.run_log import RunLog
    from lib.ssl_client import SSLClient
    from lib.teo_client import TEOClient
    from services.certificate_service import CertificateService
    from services.discovery_service import DiscoveryService
    from services.polling import PollSettings
    from services.rebind_service import RebindService
    from services.rotation_service import RotationService, RotationSettings, TimeoutPolicy

    log = RunLog()
    try:
        inputs = resolve_inputs(args)
        cert_pem = read_text(inputs.fullchain_file)
        key_pem = read_text(inputs.key_file)
    except CertRotateError as e:
        log.error(str(e))
        return 1

    targets = parse_domains(inputs.domains)
    if targets.is_empty():
        log.warning("The domains input names no CDN domain or EdgeOne zone; the certificate will only be uploaded.")

    poll = PollSettings(attempts=args.poll_attempts, interval=args.poll_interval)
    settings = RotationSettings(
        propagation_delay=args.propagation_delay,
        poll=poll,
        on_rebind_timeout=TimeoutPolicy(args.on_rebind_timeout),
        fail_on_delete_timeout=args.fail_on_delete_timeout,
    )

    # One credential value shared by every product client.
    auth = TencentAuth(inputs.secret_id, inputs.secret_key, region=inputs.region)
    ssl_client = SSLClient(auth)
    service = RotationService(
        certificates=CertificateService(ssl_client, log, poll=poll, account_id=inputs.account_id),
        discovery=DiscoveryService(CDNClient(auth), TEOClient(auth), log, account_id=inputs.account_id),
        rebinder=RebindService(ssl_client, log, poll=poll, account_id=inputs.account_id),
        log=log,
        settings=settings,
        account_id=inputs.account_id,
    )

    try:
        report = service.run(cert_pem, key_pem, targets, alias=args.alias)
    except CertRotateError as e:
        log.error(str(e))
        return 1
    except Exception as e:
        log.error(f"Unexpected error: {e}")
        console.print_exception()
        return 1

    _print_summary(log, report)
    _write_action_outputs(report)
    return 0


# ---------------------------------------------------------------------------
# account
# ---------------------------------------------------------------------------

def cmd_account(args) -> int:
    from services.config_service import add_account, deactivate_account, list_accounts

    if args.account_command == "list":
        accounts = list_accounts()
        if not accounts:
            console.print("[yellow]No accounts configured.[/yellow] Run [bold]tc-cert-rotate account add[/bold].")
            return 0
        table = Table(title="Stored accounts")
        table.add_column("Name", style="bold cyan")
        table.add_column("SecretId")
        table.add_column("Region")
        table.add_column("Created")
        for a in accounts:
            table.add_row(a.name, f"{a.secret_id[:6]}…", a.region or "-", a.created_at.strftime("%Y-%m-%d"))
        console.print(table)
        return 0

    if args.account_command == "remove":
        if deactivate_account(args.name):
            console.print(f"[green]✓ Account '{args.name}' removed[/green]")
            return 0
        console.print(f"[red]✗ Account '{args.name}' not found[/red]")
        return 1

    import questionary

    name = args.name or questionary.text("Account name:").ask()
    if not name:
        console.print("[yellow]Cancelled.[/yellow]")
        return 1
    secret_id = args.secret_id or questionary.text("SecretId:").ask()
    if not secret_id:
        console.print("[yellow]Cancelled.[/yellow]")
        return 1
    secret_key = questionary.password("SecretKey:").ask()
    if not secret_key:
        console.print("[yellow]Cancelled.[/yellow]")
        return 1

    account = add_account(name.strip(), secret_id.strip(), secret_key.strip(), region=args.region)
    console.print(f"[green]✓ Account '{account.name}' saved[/green] (secret key encrypted)")
    return 0


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------

_STATUS_STYLE = {"SUCCESS": "green", "FAILURE": "red", "TIMEOUT": "yellow"}


def cmd_history(args) -> int:
    from services import audit_service

    if args.cert_id:
        entries = audit_service.get_by_resource(audit_service.CERTIFICATE, args.cert_id)[: args.limit]
    elif args.failures:
        entries = audit_service.get_failures(limit=args.limit)
    else:
        entries = audit_service.get_recent(limit=args.limit)

    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return 0

    table = Table(title="Audit log")
    table.add_column("Time", no_wrap=True)
    table.add_column("Product")
    table.add_column("Operation", no_wrap=True)
    table.add_column("Status")
    table.add_column("Resource")
    table.add_column("Error", overflow="fold")
    for e in entries:
        style = _STATUS_STYLE.get(e.status, "white")
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            e.product,
            e.operation,
            f"[{style}]{e.status}[/{style}]",
            escape(e.resource_id or "-"),
            escape(e.error_message or ""),
        )
    console.print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    from db.database import init_db

    parser = _build_parser()
    args = parser.parse_args(_normalize_argv(list(sys.argv[1:] if argv is None else argv)))

    init_db()
    if args.command == "account":
        return cmd_account(args)
    if args.command == "history":
        return cmd_history(args)
    return cmd_rotate(args)


if __name__ == "__main__":
    sys.exit(main())
