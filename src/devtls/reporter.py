"""Report generation (text and JSON)."""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from devtls.models import CAInfo, CertificateRecord, TrustReport, TrustScope, TrustStatus, TrustTargetResult
from devtls.naming import unsanitize

logger = logging.getLogger(__name__)

# Global flag for colored output
_use_color = True

_STATUS_STYLE = {
    TrustStatus.INSTALLED: ("green", "✓"),
    TrustStatus.SKIPPED: ("yellow", "-"),
    TrustStatus.FAILED: ("red", "✗"),
    TrustStatus.NOT_ATTEMPTED: ("dim", "·"),
}


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def _colorize(text: str, style: str) -> str:
    if not _use_color:
        return text
    from io import StringIO

    from rich.console import Console

    output = StringIO()
    console = Console(file=output, force_terminal=True, width=1000)
    console.print(f"[{style}]{text}[/{style}]", end="", highlight=False)
    return output.getvalue()


def _format_status(status: TrustStatus) -> str:
    style, marker = _STATUS_STYLE[status]
    return _colorize(f"{status.value} {marker}", style)


def _format_expiry(record: CertificateRecord, threshold_days: int) -> str:
    days = record.days_until_expiry
    if record.is_expired:
        return _colorize("EXPIRED", "red")
    if days < threshold_days:
        return _colorize(f"{days} days", "yellow")
    return _colorize(f"{days} days", "green")


def generate_certificate_list_report(
    records: List[CertificateRecord],
    threshold_days: int = 30,
) -> str:
    """
    Generate a human-readable list of issued certificates.

    Args:
        records: Inventory entries
        threshold_days: Entries expiring sooner are highlighted

    Returns:
        Formatted text report
    """
    if not records:
        return "No certificates generated yet."

    lines = []
    lines.append("=" * 70)
    lines.append("Issued Certificates")
    lines.append("=" * 70)
    for record in sorted(records, key=lambda r: r.domain):
        lines.append(f"{unsanitize(record.domain)}")
        lines.append(f"  Valid From:  {record.not_before.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        lines.append(f"  Valid Until: {record.not_after.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        lines.append(f"  Expires In:  {_format_expiry(record, threshold_days)}")
        lines.append(f"  Path:        {record.path}")
        lines.append("")
    lines.append("=" * 70)
    return "\n".join(lines)


def _format_target(result: TrustTargetResult) -> List[str]:
    label = "System" if result.scope == TrustScope.SYSTEM else "Browser"
    lines = [f"  [{label}] {result.target}: {_format_status(result.status)}"]
    if result.message:
        lines.append(f"    {result.message}")
    for location in result.locations:
        lines.append(f"    - {location}")
    if result.status == TrustStatus.FAILED:
        if result.manual_command:
            lines.append("    Run manually:")
            lines.append(f"      {result.manual_command}")
        if result.instructions:
            lines.append("    Manual installation:")
            for instruction in result.instructions.splitlines():
                lines.append(f"      {instruction}" if instruction else "")
    return lines


def generate_trust_report(report: TrustReport) -> str:
    """Generate a text summary of per-target trust results."""
    lines = []
    lines.append("=" * 70)
    lines.append(f"Trust Store Installation ({report.platform})")
    lines.append("=" * 70)
    for result in report.targets:
        lines.extend(_format_target(result))
    lines.append("")
    overall = TrustStatus.INSTALLED if report.trusted else TrustStatus.FAILED
    lines.append(f"  Overall: {_format_status(overall)}")
    lines.append("=" * 70)
    return "\n".join(lines)


def generate_doctor_report(
    ca_info: Optional[CAInfo],
    trusted: bool,
    records: List[CertificateRecord],
    account_email: Optional[str] = None,
    account_plan: Optional[str] = None,
    issues: Optional[List[str]] = None,
) -> str:
    """Generate the diagnostics report shown by ``devtls doctor``."""
    ok = _colorize("OK ✓", "green")
    warn = _colorize("WARN ⚠", "yellow")
    fail = _colorize("FAIL ✗", "red")

    lines = []
    lines.append("=" * 70)
    lines.append("DevTLS Doctor")
    lines.append("=" * 70)

    if account_email:
        lines.append(f"Logged in:      {ok} ({account_email} - {account_plan or 'free'})")
    else:
        lines.append(f"Logged in:      {warn}")

    if ca_info:
        lines.append(f"CA certificate: {ok}")
        lines.append(f"  Subject:     {ca_info.subject}")
        lines.append(f"  Valid Until: {ca_info.not_after.strftime('%Y-%m-%d')}")
        lines.append(f"  SHA-256:     {ca_info.fingerprint_sha256}")
        lines.append(f"  Path:        {ca_info.cert_path}")
    else:
        lines.append(f"CA certificate: {fail}")

    lines.append(f"Trust store:    {ok if trusted else warn}")
    lines.append(f"Certificates:   {len(records)} found")
    for record in sorted(records, key=lambda r: r.domain):
        lines.append(f"  {unsanitize(record.domain):<30} {record.not_after.strftime('%Y-%m-%d')}  {record.path}")

    if issues:
        lines.append("")
        lines.append(f"Found {len(issues)} issue(s):")
        for i, issue in enumerate(issues, 1):
            lines.append(f"  {i}. {issue}")
    lines.append("=" * 70)
    return "\n".join(lines)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (TrustStatus, TrustScope)):
        return obj.value
    raise TypeError(f"Type {type(obj)} not serializable")


def generate_certificate_list_json(records: List[CertificateRecord]) -> str:
    data = []
    for record in records:
        entry = asdict(record)
        entry["primary_domain"] = unsanitize(record.domain)
        entry["days_until_expiry"] = record.days_until_expiry
        entry["is_wildcard"] = record.is_wildcard
        data.append(entry)
    return json.dumps(data, indent=2, default=_serialize)


def generate_trust_json(report: TrustReport) -> str:
    data = asdict(report)
    data["trusted"] = report.trusted
    return json.dumps(data, indent=2, default=_serialize)
