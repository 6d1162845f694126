"""Tests for trust store installation."""

from unittest.mock import patch

import pytest

from conftest import FakeRunner
from devtls.exceptions import NotFoundError, ToolMissingError, UserCancelledError
from devtls.models import TrustScope, TrustStatus
from devtls.trust import (
    NSS_NICKNAME,
    ChromiumNSSTarget,
    FirefoxNSSTarget,
    LinuxSystemTarget,
    TrustInstaller,
)


def _always_yes(prompt, command):
    return True


def _always_no(prompt, command):
    return False


@pytest.fixture
def anchor(tmp_path):
    return tmp_path / "anchors" / "devtls.crt"


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


def make_installer(config, ca, runner, home, anchor=None, confirm=_always_yes, platform="linux", targets=None):
    if targets is None and platform == "linux":
        targets = [LinuxSystemTarget(anchor_path=anchor), ChromiumNSSTarget(), FirefoxNSSTarget()]
    return TrustInstaller(
        config,
        ca,
        runner=runner,
        platform=platform,
        confirm=confirm,
        home=home,
        targets=targets,
    )


def _chromium_db(home):
    return f"sql:{home / '.pki' / 'nssdb'}"


def test_requires_ca(config, ca_manager, fake_runner, home, anchor):
    installer = make_installer(config, ca_manager, fake_runner, home, anchor)
    with pytest.raises(NotFoundError):
        installer.install()
    assert fake_runner.calls == []


def test_linux_install_commands(config, ca, fake_runner, home, anchor):
    report = make_installer(config, ca, fake_runner, home, anchor).install()

    assert report.system.status == TrustStatus.INSTALLED
    assert report.trusted
    assert fake_runner.privileged_calls == [
        ["cp", str(ca.certificate_path), str(anchor)],
        ["update-ca-certificates"],
    ]


def test_private_key_never_reaches_installer(config, ca, fake_runner, home, anchor):
    (home / ".mozilla" / "firefox" / "abc.default-release").mkdir(parents=True)

    make_installer(config, ca, fake_runner, home, anchor).install()

    assert fake_runner.calls
    for argv, _ in fake_runner.calls:
        assert str(ca.key_path) not in argv
        assert not any("ca.key" in arg for arg in argv)


def test_user_cancel_skips_privileged_commands(config, ca, fake_runner, home, anchor):
    report = make_installer(config, ca, fake_runner, home, anchor, confirm=_always_no).install()

    system = report.system
    assert system.status == TrustStatus.FAILED
    assert "cancelled" in system.message
    assert system.manual_command == (
        f"sudo cp {ca.certificate_path} {anchor} && sudo update-ca-certificates"
    )
    assert fake_runner.privileged_calls == []
    assert not report.trusted


def test_no_confirm_callback_means_cancel(config, ca, fake_runner, home, anchor):
    installer = make_installer(config, ca, fake_runner, home, anchor, confirm=None)
    with pytest.raises(UserCancelledError):
        installer.install_system()
    assert fake_runner.privileged_calls == []


def test_elevated_process_is_not_prompted(config, ca, home, anchor):
    runner = FakeRunner(elevated=True)
    report = make_installer(config, ca, runner, home, anchor, confirm=None).install(include_browsers=False)

    assert report.system.status == TrustStatus.INSTALLED


def test_missing_update_tool_returns_instructions(config, ca, home, anchor):
    runner = FakeRunner(tools=("certutil",))
    report = make_installer(config, ca, runner, home, anchor).install()

    system = report.system
    assert system.status == TrustStatus.FAILED
    assert "update-ca-trust" in system.instructions
    assert "trust anchor --store" in system.instructions
    assert runner.privileged_calls == []

    with pytest.raises(ToolMissingError) as exc_info:
        make_installer(config, ca, runner, home, anchor).install_system()
    assert exc_info.value.tool == "update-ca-certificates"


def test_failed_privileged_command_surfaces_manual_command(config, ca, home, anchor):
    runner = FakeRunner(failing=("update-ca-certificates",))
    report = make_installer(config, ca, runner, home, anchor).install(include_browsers=False)

    assert report.system.status == TrustStatus.FAILED
    assert "sudo update-ca-certificates" in report.system.manual_command


def test_nss_install_is_idempotent(config, ca, fake_runner, home, anchor):
    installer = make_installer(config, ca, fake_runner, home, anchor)

    installer.install()
    installer.install()

    assert fake_runner.nss[_chromium_db(home)].count(NSS_NICKNAME) == 1


def test_nss_install_removes_existing_duplicates(config, ca, fake_runner, home, anchor):
    fake_runner.nss[_chromium_db(home)] = [NSS_NICKNAME, NSS_NICKNAME, "Other CA"]

    make_installer(config, ca, fake_runner, home, anchor).install()

    entries = fake_runner.nss[_chromium_db(home)]
    assert entries.count(NSS_NICKNAME) == 1
    assert "Other CA" in entries


def test_chromium_database_created(config, ca, fake_runner, home, anchor):
    report = make_installer(config, ca, fake_runner, home, anchor).install()

    chromium = next(t for t in report.targets if t.target == ChromiumNSSTarget.name)
    assert chromium.status == TrustStatus.INSTALLED
    assert (home / ".pki" / "nssdb" / "cert9.db").exists()

    add = [argv for argv, _ in fake_runner.calls if "-A" in argv][0]
    assert add == [
        "certutil", "-d", _chromium_db(home), "-A",
        "-t", "C,,", "-n", NSS_NICKNAME, "-i", str(ca.certificate_path),
    ]


def test_browser_failure_does_not_fail_system(config, ca, home, anchor):
    runner = FakeRunner(failing=("certutil",))
    (home / ".mozilla" / "firefox" / "abc.default").mkdir(parents=True)

    report = make_installer(config, ca, runner, home, anchor).install()

    statuses = {t.target: t.status for t in report.targets}
    assert statuses[LinuxSystemTarget.name] == TrustStatus.INSTALLED
    assert statuses[ChromiumNSSTarget.name] == TrustStatus.FAILED
    assert statuses[FirefoxNSSTarget.name] == TrustStatus.FAILED
    assert report.trusted


def test_missing_certutil_for_browsers(config, ca, home, anchor):
    runner = FakeRunner(tools=("update-ca-certificates",))
    report = make_installer(config, ca, runner, home, anchor).install()

    chromium = next(t for t in report.targets if t.target == ChromiumNSSTarget.name)
    assert chromium.status == TrustStatus.FAILED
    assert "libnss3-tools" in chromium.instructions
    assert report.trusted


def test_firefox_profiles(config, ca, fake_runner, home, anchor):
    firefox = home / ".mozilla" / "firefox"
    (firefox / "abc.default-release").mkdir(parents=True)
    (firefox / "xyz.default").mkdir()
    (firefox / "Crash Reports").mkdir()

    report = make_installer(config, ca, fake_runner, home, anchor).install()

    result = next(t for t in report.targets if t.target == FirefoxNSSTarget.name)
    assert result.status == TrustStatus.INSTALLED
    assert result.locations == [str(firefox / "abc.default-release"), str(firefox / "xyz.default")]
    for profile in result.locations:
        assert fake_runner.nss[f"sql:{profile}"] == [NSS_NICKNAME]


def test_firefox_without_profiles_is_skipped(config, ca, fake_runner, home, anchor):
    report = make_installer(config, ca, fake_runner, home, anchor).install()

    result = next(t for t in report.targets if t.target == FirefoxNSSTarget.name)
    assert result.status == TrustStatus.SKIPPED


def test_browsers_not_attempted_when_excluded(config, ca, fake_runner, home, anchor):
    report = make_installer(config, ca, fake_runner, home, anchor).install(include_browsers=False)

    browsers = [t for t in report.targets if t.scope == TrustScope.BROWSER]
    assert browsers
    assert all(t.status == TrustStatus.NOT_ATTEMPTED for t in browsers)
    assert not any(argv[0] == "certutil" for argv, _ in fake_runner.calls)


def test_ownership_restored_for_sudo_user(config, ca, home, anchor):
    runner = FakeRunner(elevated=True, sudo_user="alice")

    with patch("devtls.trust.restore_ownership") as mock_restore:
        make_installer(config, ca, runner, home, anchor).install()

    mock_restore.assert_any_call(home / ".pki", "alice")


def test_macos_install(config, ca, home):
    runner = FakeRunner(platform="darwin")
    report = make_installer(config, ca, runner, home, platform="darwin").install()

    assert report.system.status == TrustStatus.INSTALLED
    assert runner.privileged_calls == [[
        "security", "add-trusted-cert", "-d", "-r", "trustRoot",
        "-k", "/Library/Keychains/System.keychain", str(ca.certificate_path),
    ]]
    chromium = next(t for t in report.targets if t.target == ChromiumNSSTarget.name)
    assert chromium.status == TrustStatus.SKIPPED


def test_macos_is_trusted_queries_keychain(config, ca, home):
    runner = FakeRunner(platform="darwin")
    assert make_installer(config, ca, runner, home, platform="darwin").is_trusted()
    assert runner.calls[-1][0][:3] == ["security", "find-certificate", "-c"]

    failing = FakeRunner(platform="darwin", failing=("security",))
    assert not make_installer(config, ca, failing, home, platform="darwin").is_trusted()


def test_windows_install(config, ca, home):
    runner = FakeRunner(platform="windows", tools=("certutil",))
    report = make_installer(config, ca, runner, home, platform="windows").install()

    assert report.system.status == TrustStatus.INSTALLED
    assert runner.privileged_calls == [["certutil", "-addstore", "Root", str(ca.certificate_path)]]
    firefox = next(t for t in report.targets if t.target == FirefoxNSSTarget.name)
    assert firefox.status == TrustStatus.SKIPPED


def test_linux_is_trusted_checks_anchor_file(config, ca, fake_runner, home, anchor):
    installer = make_installer(config, ca, fake_runner, home, anchor)
    assert not installer.is_trusted()

    anchor.parent.mkdir(parents=True)
    anchor.write_bytes(ca.certificate_path.read_bytes())
    assert installer.is_trusted()


def test_is_trusted_false_without_ca(config, ca_manager, fake_runner, home, anchor):
    assert not make_installer(config, ca_manager, fake_runner, home, anchor).is_trusted()


def test_status_reports_each_target(config, ca, fake_runner, home, anchor):
    installer = make_installer(config, ca, fake_runner, home, anchor)
    installer.install()
    anchor.parent.mkdir(parents=True)
    anchor.touch()

    report = installer.status()

    statuses = {t.target: t.status for t in report.targets}
    assert statuses[LinuxSystemTarget.name] == TrustStatus.INSTALLED
    assert statuses[ChromiumNSSTarget.name] == TrustStatus.INSTALLED
    assert statuses[FirefoxNSSTarget.name] == TrustStatus.NOT_ATTEMPTED
