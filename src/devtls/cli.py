"""CLI entry point using Typer."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from devtls.ca import CAManager
from devtls.config import (
    DEFAULT_API_BASE_URL,
    AccountConfig,
    DevTLSConfig,
    load_account_config,
    save_account_config,
)
from devtls.exceptions import DevTLSError, LicenseServiceError, RenewalError, WildcardLimitError
from devtls.inventory import DEFAULT_RENEWAL_THRESHOLD_DAYS, CertificateInventory
from devtls.issuer import CertificateIssuer, with_loopback
from devtls.license import LicenseClient
from devtls.naming import is_wildcard
from devtls.reporter import (
    generate_certificate_list_json,
    generate_certificate_list_report,
    generate_doctor_report,
    generate_trust_json,
    generate_trust_report,
    set_color_output,
)
from devtls.trust import TrustInstaller

app = typer.Typer(help="Local development Certificate Authority")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


class Engine:
    """Components wired to one storage root."""

    def __init__(self, config: DevTLSConfig):
        self.config = config
        self.ca = CAManager(config)
        self.issuer = CertificateIssuer(config, self.ca)
        self.inventory = CertificateInventory(config, self.issuer)

    def trust_installer(self, assume_yes: bool = False) -> TrustInstaller:
        return TrustInstaller(self.config, self.ca, confirm=_confirm_always if assume_yes else confirm_privileged)


def _confirm_always(prompt: str, command: str) -> bool:
    return True


def confirm_privileged(prompt: str, command: str) -> bool:
    """Show the privileged command and ask before running it."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.prompt import Confirm

    console = Console()
    console.print(Panel(command, title="Command to run", expand=False))
    return Confirm.ask(prompt, default=True, console=console)


def _engine(ctx: typer.Context) -> Engine:
    return ctx.obj


def _fail(message: str, code: int = 1) -> None:
    logger.error(message)
    sys.exit(code)


@app.callback()
def main(
    ctx: typer.Context,
    home: Optional[Path] = typer.Option(None, "--home", envvar="DEVTLS_HOME", help="Storage root (default: ~/.devtls)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
):
    """
    Issue locally trusted TLS certificates for development.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("devtls").setLevel(logging.DEBUG)
    set_color_output(color)

    config = DevTLSConfig(storage_root=home) if home else DevTLSConfig()
    ctx.obj = Engine(config)


def _install_trust(engine: Engine, include_browsers: bool, assume_yes: bool, json_output: bool = False) -> bool:
    report = engine.trust_installer(assume_yes=assume_yes).install(include_browsers=include_browsers)
    print(generate_trust_json(report) if json_output else generate_trust_report(report))
    return report.trusted


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Regenerate the CA even if one exists"),
    no_trust: bool = typer.Option(False, "--no-trust", help="Do not install the CA into trust stores"),
    no_browsers: bool = typer.Option(False, "--no-browsers", help="Skip browser (NSS) trust stores"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    Create the local Certificate Authority and trust it.
    """
    engine = _engine(ctx)

    if force and engine.ca.exists() and not yes:
        typer.confirm(
            "Regenerating the CA invalidates every certificate issued so far. Continue?",
            abort=True,
        )

    try:
        created = engine.ca.ensure(regenerate=force)
    except DevTLSError as e:
        _fail(str(e))

    if created:
        logger.info(f"CA created in {engine.config.ca_dir}")
    else:
        logger.info(f"CA already exists in {engine.config.ca_dir} (use --force to regenerate)")

    if no_trust:
        return

    try:
        trusted = _install_trust(engine, include_browsers=not no_browsers, assume_yes=yes)
    except DevTLSError as e:
        _fail(str(e))
    if not trusted:
        sys.exit(2)


def _check_wildcard_quota(engine: Engine, primary: str) -> None:
    """Ask the licensing service whether another wildcard cert is allowed."""
    if not is_wildcard(primary):
        return

    account = load_account_config(engine.config)
    if account is None or not account.logged_in:
        logger.debug("Not logged in, skipping wildcard plan check")
        return

    current = engine.inventory.count_wildcards()
    with LicenseClient(account.api_base_url, account.token) as client:
        decision = client.check_wildcard_allowed(account.plan, current)
    if not decision.allowed:
        raise WildcardLimitError(decision.plan, decision.current_count, decision.maximum or 0)


@app.command()
def cert(
    ctx: typer.Context,
    domains: List[str] = typer.Argument(..., help="Domains (first is primary), e.g. myapp.local '*.local.test' 10.0.0.5"),
    no_localhost: bool = typer.Option(False, "--no-localhost", help="Do not add localhost and 127.0.0.1"),
):
    """
    Generate a certificate for one or more domains.
    """
    engine = _engine(ctx)
    requested = list(domains) if no_localhost else with_loopback(domains)

    try:
        _check_wildcard_quota(engine, domains[0])
        cert_dir = engine.issuer.issue(requested)
    except (DevTLSError, ValueError) as e:
        _fail(str(e))

    print(f"Certificate: {cert_dir / 'cert.pem'}")
    print(f"Private Key: {cert_dir / 'key.pem'}")
    print(f"Domains:     {', '.join(requested)}")


@app.command("list")
def list_certs(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    days: int = typer.Option(DEFAULT_RENEWAL_THRESHOLD_DAYS, "--days", help="Highlight certificates expiring within N days"),
):
    """
    List issued certificates and their expiry.
    """
    records = _engine(ctx).inventory.list()
    if json_output:
        print(generate_certificate_list_json(records))
    else:
        print(generate_certificate_list_report(records, threshold_days=days))


@app.command()
def renew(
    ctx: typer.Context,
    days: int = typer.Option(DEFAULT_RENEWAL_THRESHOLD_DAYS, "--days", "-d", min=0, help="Renew certificates expiring within N days"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would be renewed"),
):
    """
    Renew certificates expiring within the threshold.
    """
    engine = _engine(ctx)
    if not engine.ca.exists():
        _fail("CA not found. Run 'devtls init' first")

    if dry_run:
        expiring = engine.inventory.expiring(days)
        if not expiring:
            print("No certificates need renewal.")
        for record in expiring:
            print(f"Would renew: {record.domain} (expires {record.not_after:%Y-%m-%d})")
        return

    try:
        renewed = engine.inventory.renew(days)
    except RenewalError as e:
        for domain in e.renewed:
            print(f"Renewed: {domain}")
        _fail(str(e))

    if not renewed:
        print("No certificates need renewal.")
        return
    logger.info(f"Renewed {len(renewed)} certificate(s)")
    for domain in renewed:
        print(f"Renewed: {domain}")


@app.command()
def trust(
    ctx: typer.Context,
    no_browsers: bool = typer.Option(False, "--no-browsers", help="Skip browser (NSS) trust stores"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
):
    """
    (Re)install the CA certificate in OS and browser trust stores.
    """
    try:
        trusted = _install_trust(_engine(ctx), include_browsers=not no_browsers, assume_yes=yes, json_output=json_output)
    except DevTLSError as e:
        _fail(str(e))
    if not trusted:
        sys.exit(2)


@app.command()
def login(
    ctx: typer.Context,
    token: str = typer.Option(..., "--token", prompt="Personal Access Token", hide_input=True, help="Token from the web dashboard"),
    api_url: str = typer.Option(DEFAULT_API_BASE_URL, "--api-url", help="Licensing API base URL"),
):
    """
    Store credentials for the licensing service.
    """
    engine = _engine(ctx)
    token = token.strip()
    if not token:
        _fail("Token cannot be empty")

    try:
        with LicenseClient(api_url, token) as client:
            user = client.me()
            try:
                client.machine_ping()
            except LicenseServiceError as e:
                logger.warning(f"Could not register machine: {e}")
    except LicenseServiceError as e:
        _fail(f"Failed to authenticate: {e}")

    account = AccountConfig(
        api_base_url=api_url,
        token=token,
        token_prefix=token[:12],
        email=user.email,
        plan=user.plan,
    )
    try:
        save_account_config(engine.config, account)
    except DevTLSError as e:
        _fail(str(e))
    logger.info(f"Logged in as {user.email} ({user.plan})")


@app.command()
def whoami(ctx: typer.Context):
    """
    Show the stored account.
    """
    try:
        account = load_account_config(_engine(ctx).config)
    except DevTLSError as e:
        _fail(str(e))

    if account is None or not account.logged_in:
        _fail("Not logged in. Run 'devtls login' first")

    print(f"Email:        {account.email}")
    print(f"Plan:         {account.plan}")
    print(f"API URL:      {account.api_base_url}")
    print(f"Token Prefix: {account.token_prefix}...")


@app.command()
def setup(
    ctx: typer.Context,
    no_browsers: bool = typer.Option(False, "--no-browsers", help="Skip browser (NSS) trust stores"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    One-time setup: create the CA and trust it everywhere.
    """
    engine = _engine(ctx)
    try:
        engine.ca.ensure()
        trusted = _install_trust(engine, include_browsers=not no_browsers, assume_yes=yes)
    except DevTLSError as e:
        _fail(str(e))

    print("Generate certificates with: devtls cert myapp.local")
    if not trusted:
        sys.exit(2)


@app.command()
def doctor(ctx: typer.Context):
    """
    Diagnose the local setup.
    """
    engine = _engine(ctx)
    issues: List[str] = []

    try:
        account = load_account_config(engine.config)
    except DevTLSError as e:
        logger.warning(str(e))
        account = None

    ca_info = None
    if engine.ca.exists():
        try:
            ca_info = engine.ca.info()
        except DevTLSError as e:
            issues.append(f"CA certificate unreadable ({e}). Run 'devtls init --force'")
    else:
        issues.append("CA not found. Run 'devtls init'")

    trusted = engine.trust_installer().is_trusted()
    if ca_info and not trusted:
        issues.append("CA may not be trusted. Run 'devtls trust'")

    records = engine.inventory.list()
    print(generate_doctor_report(
        ca_info,
        trusted,
        records,
        account_email=account.email if account and account.logged_in else None,
        account_plan=account.plan if account else None,
        issues=issues,
    ))

    if ca_info is None:
        sys.exit(2)


if __name__ == "__main__":
    app()
