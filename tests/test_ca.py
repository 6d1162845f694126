"""Tests for CA generation and loading."""

import os
import stat
from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID

from devtls.ca import CA_COMMON_NAME, CA_VALIDITY_DAYS, CAManager
from devtls.certificate import get_common_name, key_matches_certificate
from devtls.exceptions import NotFoundError, ParseError


def test_exists_false_without_files(ca_manager):
    assert not ca_manager.exists()


def test_generate_creates_both_files(ca_manager, config):
    ca_manager.generate()

    assert config.ca_cert_path.is_file()
    assert config.ca_key_path.is_file()
    assert ca_manager.exists()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_key_file_is_owner_only(ca, config):
    mode = stat.S_IMODE(config.ca_key_path.stat().st_mode)
    assert mode == 0o600

    cert_mode = stat.S_IMODE(config.ca_cert_path.stat().st_mode)
    assert cert_mode & stat.S_IROTH


def test_lone_file_counts_as_absent(ca, config):
    config.ca_key_path.unlink()
    assert not ca.exists()


def test_generated_certificate_attributes(ca):
    cert, key = ca.load()

    assert get_common_name(cert) == CA_COMMON_NAME
    assert cert.issuer == cert.subject
    assert 0 < cert.serial_number < 2 ** 128
    assert key.key_size >= 2048
    assert key_matches_certificate(key, cert)

    lifetime = cert.not_valid_after_utc - cert.not_valid_before_utc
    assert lifetime == timedelta(days=CA_VALIDITY_DAYS)

    constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    assert constraints.ca is True
    assert constraints.path_length == 1

    usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    assert usage.digital_signature
    assert usage.key_cert_sign
    assert usage.crl_sign

    eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.SERVER_AUTH in eku
    assert ExtendedKeyUsageOID.CLIENT_AUTH in eku

    # Self-signed
    cert.verify_directly_issued_by(cert)


def test_load_missing_raises_not_found(ca_manager):
    with pytest.raises(NotFoundError):
        ca_manager.load()


def test_load_malformed_certificate_raises_parse_error(ca, config):
    config.ca_cert_path.write_text("-----BEGIN CERTIFICATE-----\ngarbage\n-----END CERTIFICATE-----\n")
    with pytest.raises(ParseError):
        ca.load()


def test_load_malformed_key_raises_parse_error(ca, config):
    config.ca_key_path.write_text("not a key")
    with pytest.raises(ParseError):
        ca.load()


def test_load_mismatched_key_raises_parse_error(ca, config, tmp_path):
    other = CAManager(type(config)(storage_root=tmp_path / "other", config_dir=config.config_dir))
    other.generate()
    config.ca_key_path.write_bytes(other.key_path.read_bytes())

    with pytest.raises(ParseError):
        ca.load()


def test_ensure_keeps_existing_ca(ca):
    serial = ca.load_certificate().serial_number
    assert ca.ensure() is False
    assert ca.load_certificate().serial_number == serial


def test_regenerate_invalidates_previous_leaves(ca, issuer):
    cert_dir = issuer.issue(["app.local"])
    leaf = x509.load_pem_x509_certificate((cert_dir / "cert.pem").read_bytes())

    assert ca.ensure(regenerate=True) is True
    new_ca = ca.load_certificate()

    with pytest.raises(Exception):
        leaf.verify_directly_issued_by(new_ca)


def test_info(ca):
    info = ca.info()
    assert CA_COMMON_NAME in info.subject
    assert len(info.fingerprint_sha256) == 64
    assert info.cert_path == ca.certificate_path
