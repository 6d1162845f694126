"""Certificate and key PEM handling shared by the CA, issuer and inventory."""

import logging
import os
import secrets
import tempfile
from pathlib import Path
from typing import List, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from devtls.exceptions import CryptoError, NotFoundError, ParseError, StorageError

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
SERIAL_BITS = 128

PUBLIC_FILE_MODE = 0o644
PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def generate_private_key() -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    except Exception as e:
        raise CryptoError(f"Failed to generate private key: {e}") from e


def random_serial_number() -> int:
    """Random positive serial of at most 128 bits."""
    serial = 0
    while serial == 0:
        serial = secrets.randbits(SERIAL_BITS)
    return serial


def certificate_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    # PKCS#1 ("RSA PRIVATE KEY"), unencrypted; readable by nginx, node and friends
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_certificate(path: Path) -> x509.Certificate:
    """
    Load a PEM certificate from disk.

    Raises:
        NotFoundError: File does not exist
        StorageError: File exists but cannot be read
        ParseError: Content is not a valid PEM certificate
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise NotFoundError(f"Certificate not found: {path}") from e
    except OSError as e:
        raise StorageError(f"Failed to read certificate {path}: {e}") from e

    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise ParseError(f"Failed to parse certificate {path}: {e}") from e


def load_private_key(path: Path) -> rsa.RSAPrivateKey:
    """
    Load an unencrypted PEM private key from disk.

    Raises:
        NotFoundError: File does not exist
        StorageError: File exists but cannot be read
        ParseError: Content is not a valid RSA private key
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise NotFoundError(f"Private key not found: {path}") from e
    except OSError as e:
        raise StorageError(f"Failed to read private key {path}: {e}") from e

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise ParseError(f"Failed to parse private key {path}: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise ParseError(f"Unsupported private key type in {path}: {type(key).__name__}")
    return key


def key_matches_certificate(key: rsa.RSAPrivateKey, cert: x509.Certificate) -> bool:
    """True if the certificate's public key is the public half of ``key``."""
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    cert_public = cert.public_key().public_bytes(serialization.Encoding.DER, fmt)
    key_public = key.public_key().public_bytes(serialization.Encoding.DER, fmt)
    return cert_public == key_public


def fingerprint_sha256(cert: x509.Certificate) -> str:
    return cert.fingerprint(hashes.SHA256()).hex().upper()


def get_common_name(cert: x509.Certificate) -> str:
    attrs = cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
    if attrs:
        return str(attrs[0].value)
    return cert.subject.rfc4514_string()


def get_subject_alternative_names(cert: x509.Certificate) -> Tuple[List[str], List[str]]:
    """
    Extract SAN entries.

    Returns:
        Tuple of (dns_names, ip_addresses), both in certificate order
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return [], []

    dns_names = san.get_values_for_type(x509.DNSName)
    ip_addresses = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
    return dns_names, ip_addresses


def ensure_directory(path: Path, mode: int = PRIVATE_DIR_MODE) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True, mode=mode)
    except OSError as e:
        raise StorageError(f"Failed to create directory {path}: {e}") from e


def _write_temp(directory: Path, data: bytes, mode: int) -> Path:
    fd, temp_name = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, mode)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return Path(temp_name)


def write_key_and_certificate(
    key_path: Path,
    key_pem: bytes,
    cert_path: Path,
    cert_pem: bytes,
) -> None:
    """
    Persist a key/certificate pair.

    Both files are fully written to temporary files in the target directory
    before either is moved into place, so a failure while writing leaves the
    previous pair untouched. The key is renamed first; a crash between the
    two renames leaves a key that no longer matches the certificate, which
    ``load`` reports as a ParseError.

    Raises:
        StorageError: Any filesystem failure
    """
    directory = cert_path.parent
    ensure_directory(directory)
    ensure_directory(key_path.parent)

    temp_files: List[Path] = []
    try:
        temp_key = _write_temp(key_path.parent, key_pem, PRIVATE_FILE_MODE)
        temp_files.append(temp_key)
        temp_cert = _write_temp(directory, cert_pem, PUBLIC_FILE_MODE)
        temp_files.append(temp_cert)

        os.replace(temp_key, key_path)
        os.replace(temp_cert, cert_path)
    except OSError as e:
        raise StorageError(f"Failed to write {cert_path.name}/{key_path.name} in {directory}: {e}") from e
    finally:
        for temp in temp_files:
            temp.unlink(missing_ok=True)

    logger.debug(f"Wrote {cert_path} and {key_path}")
