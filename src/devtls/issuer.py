"""Leaf certificate issuance."""

import ipaddress
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from devtls.ca import CAManager
from devtls.certificate import (
    certificate_to_pem,
    generate_private_key,
    key_matches_certificate,
    private_key_to_pem,
    random_serial_number,
    write_key_and_certificate,
)
from devtls.config import DevTLSConfig
from devtls.exceptions import CryptoError, NotFoundError
from devtls.naming import base_domain, is_wildcard, sanitize

logger = logging.getLogger(__name__)

CERT_VALIDITY_DAYS = 365
LEAF_ORGANIZATION = "DevTLS"
CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"

LOOPBACK_DOMAINS = ("localhost", "127.0.0.1")

# X.520 upper bound for commonName; longer names live in the SAN only
MAX_COMMON_NAME_LENGTH = 64


def _parse_ip(value: str):
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def build_subject_alternative_names(domains: Sequence[str]) -> List[x509.GeneralName]:
    """
    Derive SAN entries from a list of domains.

    - an IP literal becomes an IP entry only
    - ``*.x`` becomes ``DNS:*.x`` and ``DNS:x``
    - anything else becomes a DNS entry

    Order is preserved; repeated entries are only emitted once.
    """
    names: List[x509.GeneralName] = []

    def add(name: x509.GeneralName) -> None:
        if name not in names:
            names.append(name)

    for domain in domains:
        ip = _parse_ip(domain)
        if ip is not None:
            add(x509.IPAddress(ip))
            continue
        if not domain.isascii():
            raise ValueError(
                f"Domain '{domain}' contains non-ASCII characters; pass its punycode (xn--) form instead"
            )
        if is_wildcard(domain):
            add(x509.DNSName(domain))
            add(x509.DNSName(base_domain(domain)))
        else:
            add(x509.DNSName(domain))
    return names


def leaf_subject(primary: str) -> x509.Name:
    """Subject for a leaf; the CN is left out when the name is too long for it."""
    attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, LEAF_ORGANIZATION)]
    if len(primary) <= MAX_COMMON_NAME_LENGTH:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, primary))
    return x509.Name(attributes)


def with_loopback(domains: Sequence[str]) -> List[str]:
    """Append localhost and 127.0.0.1 unless already requested."""
    result = list(domains)
    for extra in LOOPBACK_DOMAINS:
        if extra not in result:
            result.append(extra)
    return result


class CertificateIssuer:
    """Signs leaf certificates with the local CA."""

    def __init__(self, config: DevTLSConfig, ca_manager: CAManager):
        self.config = config
        self.ca_manager = ca_manager

    def storage_directory(self, primary_domain: str) -> Path:
        return self.config.certs_dir / sanitize(primary_domain)

    def issue(self, domains: Sequence[str]) -> Path:
        """
        Issue a certificate covering ``domains`` and store it.

        The first domain is the primary one: it becomes the subject CN (when
        at most 64 characters) and determines the storage directory.
        Existing files for the same identifier are replaced.

        Args:
            domains: Non-empty ordered list of DNS names, wildcards or IPs

        Returns:
            Directory containing cert.pem and key.pem

        Raises:
            ValueError: Empty domain list, blank domain or non-ASCII domain
            NotFoundError: No CA has been generated
            CryptoError: Key generation, signing or verification failed
            StorageError: Files could not be written
        """
        domains = [d.strip() for d in domains]
        if not domains:
            raise ValueError("At least one domain is required")
        if any(not d for d in domains):
            raise ValueError("Domain names must not be empty")
        subject_alt_names = build_subject_alternative_names(domains)

        if not self.ca_manager.exists():
            raise NotFoundError("CA not found. Run 'devtls init' first")

        ca_cert, ca_key = self.ca_manager.load()

        primary = domains[0]
        cert_dir = self.storage_directory(primary)
        logger.debug(f"Issuing certificate for {', '.join(domains)} into {cert_dir}")

        private_key = generate_private_key()
        now = datetime.now(timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(leaf_subject(primary))
            .issuer_name(ca_cert.subject)
            .public_key(private_key.public_key())
            .serial_number(random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=CERT_VALIDITY_DAYS))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(
                x509.SubjectAlternativeName(subject_alt_names),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                critical=False,
            )
        )

        try:
            cert = builder.sign(ca_key, hashes.SHA256())
        except Exception as e:
            raise CryptoError(f"Failed to sign certificate for {primary}: {e}") from e

        # Nothing is written unless the result chains to the CA
        try:
            cert.verify_directly_issued_by(ca_cert)
        except Exception as e:
            raise CryptoError(f"Issued certificate for {primary} does not verify against the CA: {e}") from e
        if not key_matches_certificate(private_key, cert):
            raise CryptoError(f"Issued certificate for {primary} does not match its private key")

        write_key_and_certificate(
            cert_dir / KEY_FILENAME,
            private_key_to_pem(private_key),
            cert_dir / CERT_FILENAME,
            certificate_to_pem(cert),
        )

        logger.info(f"Certificate for {primary} written to {cert_dir}")
        return cert_dir
