"""Tests for the convergence driver state machine."""
import pytest

from conftest import FakeBackend, StubRunner, keygen_handler
from homestead.config.loader import load_manifest
from homestead.core.driver import ConvergenceDriver, DriverState
from homestead.discovery.hwdetect import SystemDetector
from homestead.core.report import OutcomeStatus
from homestead.models.errors import UnsupportedPlatformError

FOUR_GB_KB = 4194304


def entry(name, required=False, **when):
    return {
        "name": name,
        "check": {"type": "package", "value": [name]},
        "action": {"type": "package", "packages": [name]},
        "when": when,
        "required": required,
    }


@pytest.fixture
def runner():
    return StubRunner(handler=keygen_handler)


@pytest.fixture
def run_driver(home, runner, make_detector):
    """Run one convergence pass against the fake home."""

    def _run(manifest, backend, ram_kb=8 * 1024 * 1024, model=None, **kwargs):
        driver = ConvergenceDriver(
            manifest,
            detector=kwargs.pop("detector", None) or make_detector(ram_kb=ram_kb, model=model),
            backend=backend,
            runner=runner,
            ssh_config_path=home / ".ssh" / "config",
            **kwargs,
        )
        return driver.run()

    return _run


class TestEndToEnd:
    """A fresh machine converges, and a second run changes nothing."""

    def test_fresh_machine(self, make_manifest, run_driver, home):
        manifest = make_manifest(packages=[entry("curl", required=True), entry("code", min_ram_gb=4)])
        backend = FakeBackend()

        report = run_driver(manifest, backend)

        statuses = [(o.target, o.status) for o in report.outcomes]
        assert statuses == [
            ("ssh-key", OutcomeStatus.APPLIED),
            ("ssh-host:a", OutcomeStatus.APPLIED),
            ("ssh-host:b", OutcomeStatus.APPLIED),
            ("curl", OutcomeStatus.APPLIED),
            ("code", OutcomeStatus.APPLIED),
        ]
        assert (home / ".ssh" / "id_ed25519").exists()
        config = (home / ".ssh" / "config").read_text()
        assert "Host a\n" in config and "Host b\n" in config
        assert report.exit_code() == 0
        assert report.finished_at is not None
        assert report.facts["ram_gb"] == 8.0

    def test_second_run_is_idempotent(self, make_manifest, run_driver, home, runner):
        manifest = make_manifest(packages=[entry("curl"), entry("code", min_ram_gb=4)])
        backend = FakeBackend()
        run_driver(manifest, backend)
        config_before = (home / ".ssh" / "config").read_text()
        key_before = (home / ".ssh" / "id_ed25519").read_text()
        backend.calls.clear()
        runner.calls.clear()

        report = run_driver(manifest, backend)

        assert report.with_status(OutcomeStatus.APPLIED) == []
        assert {o.status for o in report.outcomes} == {OutcomeStatus.SKIPPED_ALREADY_SATISFIED}
        assert backend.calls == []
        assert runner.commands("ssh-keygen") == []
        assert (home / ".ssh" / "config").read_text() == config_before
        assert (home / ".ssh" / "id_ed25519").read_text() == key_before
        assert list((home / ".ssh").glob("config.backup.*")) == []


class TestGating:
    """Applicability predicates and --skip-dev-tools."""

    def test_ram_just_below_threshold(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("code", min_ram_gb=4)])
        backend = FakeBackend()

        report = run_driver(manifest, backend, ram_kb=FOUR_GB_KB - 1)

        outcome = report.get("code")
        assert outcome.status == OutcomeStatus.SKIPPED_NOT_APPLICABLE
        assert "3.99" in outcome.detail
        assert backend.calls == []

    def test_ram_exactly_at_threshold(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("code", min_ram_gb=4)])

        report = run_driver(manifest, FakeBackend(), ram_kb=FOUR_GB_KB)

        assert report.get("code").status == OutcomeStatus.APPLIED

    def test_skip_dev_tools(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("curl"), entry("code", min_ram_gb=4)])
        backend = FakeBackend()

        report = run_driver(manifest, backend, skip_dev_tools=True)

        assert report.get("curl").status == OutcomeStatus.APPLIED
        assert report.get("code").status == OutcomeStatus.SKIPPED_NOT_APPLICABLE
        assert "--skip-dev-tools" in report.get("code").detail
        assert ("install", ("code",)) not in backend.calls

    def test_pi_model_gate(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[
            entry("xrdp", pi_models=["two", "four", "five"]),
            entry("lite", pi_models=["zero_or_one"]),
        ])

        report = run_driver(manifest, FakeBackend(), model="Raspberry Pi 4 Model B Rev 1.4")

        assert report.get("xrdp").status == OutcomeStatus.APPLIED
        assert report.get("lite").status == OutcomeStatus.SKIPPED_NOT_APPLICABLE

    def test_requires_sees_package_installed_earlier_in_run(self, make_manifest, run_driver):
        manifest = make_manifest(
            packages=[entry("xrdp")],
            services=[{"name": "xrdp-service", "unit": "xrdp", "when": {"requires": ["xrdp"]}}],
        )
        backend = FakeBackend()

        report = run_driver(manifest, backend)

        assert report.get("xrdp-service").status == OutcomeStatus.APPLIED
        assert backend.calls == [("install", ("xrdp",)), ("enable", "xrdp")]

    def test_requires_failed_prerequisite(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("code"), entry("cpptools", requires=["code"])])
        backend = FakeBackend(failing=["code"])

        report = run_driver(manifest, backend)

        assert report.get("code").status == OutcomeStatus.FAILED
        outcome = report.get("cpptools")
        assert outcome.status == OutcomeStatus.SKIPPED_NOT_APPLICABLE
        assert "requires code" in outcome.detail

    def test_requires_checked_live_not_from_snapshot(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[
            {
                "name": "curl-windows",
                "check": {"type": "package", "value": ["curl"]},
                "action": {"type": "package", "packages": ["curl"]},
                "when": {"os_family": "windows"},
            },
            entry("curl"),
            entry("curl-plugin", requires=["curl-windows"]),
        ])

        report = run_driver(manifest, FakeBackend())

        assert report.get("curl-windows").status == OutcomeStatus.SKIPPED_NOT_APPLICABLE
        assert report.get("curl-plugin").status == OutcomeStatus.APPLIED


class TestFailureIsolation:
    """A failed action never blocks later independent actions."""

    def test_failure_does_not_stop_run(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("broken"), entry("curl")])
        backend = FakeBackend(failing=["broken"])

        report = run_driver(manifest, backend)

        assert report.get("broken").status == OutcomeStatus.FAILED
        assert report.get("curl").status == OutcomeStatus.APPLIED
        assert report.exit_code() == 0

    def test_required_failure_sets_exit_code(self, make_manifest, run_driver):
        manifest = make_manifest(packages=[entry("broken", required=True), entry("curl")])

        report = run_driver(manifest, FakeBackend(failing=["broken"]))

        assert report.has_required_failures()
        assert report.exit_code() == 1
        assert report.get("curl").status == OutcomeStatus.APPLIED

    def test_key_failure_does_not_block_hosts(self, make_manifest, home, make_detector):
        manifest = make_manifest(packages=[entry("curl")])
        driver = ConvergenceDriver(
            manifest,
            detector=make_detector(),
            backend=FakeBackend(),
            runner=StubRunner(default_returncode=1),
            ssh_config_path=home / ".ssh" / "config",
        )

        report = driver.run()

        assert report.get("ssh-key").status == OutcomeStatus.FAILED
        assert report.get("ssh-host:a").status == OutcomeStatus.APPLIED
        assert report.get("curl").status == OutcomeStatus.APPLIED
        assert report.exit_code() == 1


class TestDryRun:
    """Dry runs probe and report without changing anything."""

    def test_dry_run_has_no_side_effects(self, make_manifest, run_driver, home, runner):
        manifest = make_manifest(packages=[entry("curl", required=True), entry("cpptools", requires=["curl"])])
        backend = FakeBackend()

        report = run_driver(manifest, backend, dry_run=True)

        assert backend.calls == []
        assert runner.calls == []
        assert not (home / ".ssh").exists()
        assert report.dry_run
        assert report.get("curl").status == OutcomeStatus.WOULD_APPLY
        assert report.get("cpptools").status == OutcomeStatus.WOULD_APPLY
        assert report.exit_code() == 0


class TestStateMachine:
    """Forward-only transitions, cancellation and the reporter."""

    def test_reaches_done(self, make_manifest, make_detector, home):
        driver = ConvergenceDriver(
            make_manifest(),
            detector=make_detector(),
            backend=FakeBackend(),
            runner=StubRunner(handler=keygen_handler),
            ssh_config_path=home / "config",
        )

        driver.run()

        assert driver.state == DriverState.DONE

    def test_run_twice_is_rejected(self, make_manifest, make_detector, home):
        driver = ConvergenceDriver(
            make_manifest(),
            detector=make_detector(),
            backend=FakeBackend(),
            runner=StubRunner(handler=keygen_handler),
            ssh_config_path=home / "config",
        )
        driver.run()

        with pytest.raises(RuntimeError, match="Illegal driver transition"):
            driver.run()

    def test_cancel_between_actions(self, make_manifest, make_detector, home):
        manifest = make_manifest(packages=[entry("curl"), entry("vim")])
        backend = FakeBackend()
        driver = ConvergenceDriver(
            manifest,
            detector=make_detector(),
            backend=backend,
            runner=StubRunner(handler=keygen_handler),
            ssh_config_path=home / "config",
        )

        def cancel_after_curl(outcome):
            if outcome.target == "curl":
                driver.cancel()

        driver.on_outcome = cancel_after_curl
        report = driver.run()

        assert report.cancelled
        assert report.get("curl").status == OutcomeStatus.APPLIED
        assert report.get("vim") is None
        assert backend.calls == [("install", ("curl",))]
        assert driver.state == DriverState.DONE

    def test_reporter_receives_finished_report(self, make_manifest, run_driver):
        received = []

        report = run_driver(make_manifest(), FakeBackend(), reporter=received.append)

        assert received == [report]
        assert received[0].finished_at is not None

    def test_reporter_failure_is_fatal(self, make_manifest, run_driver):
        def broken_reporter(report):
            raise OSError("disk full")

        with pytest.raises(OSError, match="disk full"):
            run_driver(make_manifest(), FakeBackend(), reporter=broken_reporter)

    def test_unsupported_platform_before_any_action(self, make_manifest, make_detector, home):
        runner = StubRunner(handler=keygen_handler)
        driver = ConvergenceDriver(
            make_manifest(packages=[entry("curl")]),
            detector=make_detector(system="Plan9"),
            runner=runner,
            ssh_config_path=home / "config",
        )

        with pytest.raises(UnsupportedPlatformError):
            driver.run()

        assert runner.calls == []
        assert not (home / "config").exists()


class WingetMachine(FakeBackend):
    """Fake winget whose installs put the matching CLI on PATH."""

    COMMANDS = {"Microsoft.VisualStudioCode": "code", "GitHub.cli": "gh"}

    def __init__(self, on_path):
        super().__init__()
        self.on_path = on_path

    def install(self, packages):
        super().install(packages)
        self.on_path.update(self.COMMANDS[p] for p in packages if p in self.COMMANDS)


class TestDefaultManifestOnWindows:
    """The built-in manifest converges on Windows in one run."""

    @pytest.fixture
    def windows(self, tmp_path, home):
        on_path = set()
        extensions = set()

        def handler(argv):
            if argv[0] == "powershell":
                return (0, "17179869184\r\n")
            if "--list-extensions" in argv:
                return (0, "\n".join(sorted(extensions)))
            if "--install-extension" in argv:
                extensions.add(argv[argv.index("--install-extension") + 1].lower())
                return (0, "")
            return keygen_handler(argv)

        runner = StubRunner(handler=handler)
        backend = WingetMachine(on_path)
        defaults = load_manifest()
        manifest = defaults.model_copy(update={
            "ssh_identity": defaults.ssh_identity.model_copy(
                update={"path": str(home / ".ssh" / "id_ed25519"), "comment": "test@host"}
            ),
        })

        def run():
            detector = SystemDetector(
                runner=runner,
                env={},
                which=lambda name: f"C:\\bin\\{name}.cmd" if name in on_path else None,
                system="Windows",
                machine="AMD64",
                meminfo_path=tmp_path / "no-meminfo",
                model_path=tmp_path / "no-model",
                version_path=tmp_path / "no-version",
            )
            return ConvergenceDriver(
                manifest,
                detector=detector,
                backend=backend,
                runner=runner,
                ssh_config_path=home / ".ssh" / "config",
            ).run()

        return run

    def test_first_run_installs_extensions(self, windows):
        report = windows()

        applied = [o.target for o in report.with_status(OutcomeStatus.APPLIED)]
        assert "windows-vscode" in applied
        assert "windows-vscode-cpptools" in applied
        assert "windows-vscode-remote-ssh" in applied
        assert report.get("vscode-cpptools").status == OutcomeStatus.SKIPPED_NOT_APPLICABLE
        assert report.failures() == []

    def test_second_run_applies_nothing(self, windows):
        windows()

        report = windows()

        assert report.with_status(OutcomeStatus.APPLIED) == []
        assert report.failures() == []
