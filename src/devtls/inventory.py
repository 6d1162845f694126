"""Inventory of issued certificates and expiry-driven renewal."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List

from devtls.certificate import load_certificate
from devtls.config import DevTLSConfig
from devtls.exceptions import DevTLSError, NotFoundError, RenewalError
from devtls.issuer import CERT_FILENAME, CertificateIssuer
from devtls.models import CertificateRecord
from devtls.naming import unsanitize

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_THRESHOLD_DAYS = 30


class CertificateInventory:
    """Enumerates issued certificates and re-issues those about to expire."""

    def __init__(self, config: DevTLSConfig, issuer: CertificateIssuer):
        self.config = config
        self.issuer = issuer

    def list(self) -> List[CertificateRecord]:
        """
        Scan the certificates directory.

        Entries without a readable, parseable cert.pem are skipped so one
        corrupt certificate does not hide the rest. Order follows the
        filesystem; sort explicitly if needed.
        """
        certs_dir = self.config.certs_dir
        records: List[CertificateRecord] = []

        try:
            entries = list(certs_dir.iterdir())
        except FileNotFoundError:
            return records

        for entry in entries:
            if not entry.is_dir():
                continue
            try:
                cert = load_certificate(entry / CERT_FILENAME)
            except DevTLSError as e:
                logger.debug(f"Skipping {entry.name}: {e}")
                continue

            records.append(CertificateRecord(
                domain=entry.name,
                not_before=cert.not_valid_before_utc,
                not_after=cert.not_valid_after_utc,
                path=entry,
            ))

        return records

    def get(self, identifier: str) -> CertificateRecord:
        for record in self.list():
            if record.domain == identifier:
                return record
        raise NotFoundError(f"No certificate found for {identifier}")

    def expiring(self, threshold_days: int = DEFAULT_RENEWAL_THRESHOLD_DAYS) -> List[CertificateRecord]:
        """Certificates whose notAfter falls before now + threshold_days."""
        if threshold_days < 0:
            raise ValueError("threshold_days must not be negative")

        threshold = datetime.now(timezone.utc) + timedelta(days=threshold_days)
        return [record for record in self.list() if record.not_after < threshold]

    def renew(self, threshold_days: int = DEFAULT_RENEWAL_THRESHOLD_DAYS) -> List[str]:
        """
        Re-issue every certificate expiring within ``threshold_days``.

        Only the primary domain survives renewal: the identifier encodes it
        alone, so additional names of a multi-domain certificate are dropped.
        A wildcard keeps its base-domain pairing because SANs are derived
        again.

        Returns:
            Domains that were renewed

        Raises:
            RenewalError: First failing renewal, with the domains renewed before it
        """
        renewed: List[str] = []
        for record in self.expiring(threshold_days):
            domain = unsanitize(record.domain)
            logger.info(f"Renewing {domain} (expires {record.not_after:%Y-%m-%d})")
            try:
                self.issuer.issue([domain])
            except (DevTLSError, ValueError) as e:
                raise RenewalError(domain, e, renewed) from e
            renewed.append(domain)

        return renewed

    def count_wildcards(self) -> int:
        return sum(1 for record in self.list() if record.is_wildcard)
