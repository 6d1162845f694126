"""Root Certificate Authority management."""

import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from devtls.certificate import (
    certificate_to_pem,
    fingerprint_sha256,
    generate_private_key,
    key_matches_certificate,
    load_certificate,
    load_private_key,
    private_key_to_pem,
    random_serial_number,
    write_key_and_certificate,
)
from devtls.config import DevTLSConfig
from devtls.exceptions import CryptoError, ParseError
from devtls.models import CAInfo

logger = logging.getLogger(__name__)

CA_VALIDITY_DAYS = 3650  # 10 years
CA_COMMON_NAME = "DevTLS Local Development CA"
CA_ORGANIZATION = "DevTLS Local CA"


class CAManager:
    """Creates and loads the single root CA of an installation."""

    def __init__(self, config: DevTLSConfig):
        self.config = config

    @property
    def certificate_path(self) -> Path:
        """Public CA certificate; the only CA file handed to trust stores."""
        return self.config.ca_cert_path

    @property
    def key_path(self) -> Path:
        return self.config.ca_key_path

    def exists(self) -> bool:
        """True only if both the certificate and key are present and readable."""
        for path in (self.certificate_path, self.key_path):
            if not path.is_file() or not os.access(path, os.R_OK):
                return False
        return True

    def generate(self) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
        """
        Create a new root key and self-signed certificate and persist both.

        Overwrites an existing CA. Every certificate issued by the previous CA
        stops validating once the old CA is removed from trust stores.

        Returns:
            Tuple of (certificate, private_key)

        Raises:
            CryptoError: Key generation or signing failed
            StorageError: Files could not be written
        """
        private_key = generate_private_key()
        now = datetime.now(timezone.utc)

        name = x509.Name([
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, CA_ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME),
        ])

        builder = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=CA_VALIDITY_DAYS))
            .add_extension(x509.BasicConstraints(ca=True, path_length=1), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                critical=False,
            )
        )

        try:
            cert = builder.sign(private_key, hashes.SHA256())
        except Exception as e:
            raise CryptoError(f"Failed to create CA certificate: {e}") from e

        write_key_and_certificate(
            self.key_path,
            private_key_to_pem(private_key),
            self.certificate_path,
            certificate_to_pem(cert),
        )

        logger.info(f"Generated CA certificate {self.certificate_path}")
        return cert, private_key

    def ensure(self, regenerate: bool = False) -> bool:
        """
        Make sure a CA exists.

        Args:
            regenerate: Replace an existing CA

        Returns:
            True if a new CA was generated
        """
        if self.exists() and not regenerate:
            logger.debug(f"Using existing CA at {self.config.ca_dir}")
            return False

        if regenerate and self.exists():
            logger.warning(
                "Regenerating the CA: certificates issued by the previous CA "
                "will no longer be trusted and must be re-issued"
            )
        self.generate()
        return True

    def load(self) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
        """
        Load the CA certificate and key.

        Raises:
            NotFoundError: Either file is missing
            StorageError: Either file is unreadable
            ParseError: Either file is malformed, or the key does not match
        """
        cert = load_certificate(self.certificate_path)
        key = load_private_key(self.key_path)

        if not key_matches_certificate(key, cert):
            raise ParseError(
                f"CA key {self.key_path} does not match certificate {self.certificate_path}; "
                f"regenerate the CA"
            )
        return cert, key

    def load_certificate(self) -> x509.Certificate:
        """Load only the public CA certificate."""
        return load_certificate(self.certificate_path)

    def info(self) -> CAInfo:
        cert = self.load_certificate()
        return CAInfo(
            subject=cert.subject.rfc4514_string(),
            serial_number=format(cert.serial_number, "x"),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            fingerprint_sha256=fingerprint_sha256(cert),
            cert_path=self.certificate_path,
        )
