"""Convergence driver: the top-level state machine of a run."""
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from homestead.backends import select_backend
from homestead.backends.base import PackageBackend
from homestead.core.command import CommandRunner
from homestead.core.config import get_config
from homestead.core.executor import ActionExecutor
from homestead.core.logger import get_logger
from homestead.core.report import ActionOutcome, OutcomeStatus, Phase, RunReport
from homestead.core.ssh_config import DEFAULT_SSH_CONFIG, merge_ssh_config
from homestead.core.ssh_keys import provision_ssh_key
from homestead.discovery.hwdetect import SystemDetector
from homestead.models.facts import MachineFacts
from homestead.models.manifest import Manifest, PackageEntry, ServiceEntry

logger = get_logger(__name__)

Entry = Union[PackageEntry, ServiceEntry]


class DriverState(Enum):
    INIT = 0
    PROBING_FACTS = 1
    PROVISIONING_IDENTITY = 2
    CONVERGING_PACKAGES = 3
    REPORTING = 4
    DONE = 5


class ConvergenceDriver:
    """Converge one machine toward a manifest.

    A run walks INIT -> PROBING_FACTS -> PROVISIONING_IDENTITY ->
    CONVERGING_PACKAGES -> REPORTING -> DONE exactly once. Individual
    action failures are recorded and the run continues; only the reporter
    callback (and platform detection) can abort it.
    """

    def __init__(
        self,
        manifest: Manifest,
        detector: Optional[SystemDetector] = None,
        backend: Optional[PackageBackend] = None,
        runner: Optional[CommandRunner] = None,
        dry_run: bool = False,
        skip_dev_tools: bool = False,
        ssh_config_path: Path = DEFAULT_SSH_CONFIG,
        timeout: Optional[float] = None,
        reporter: Optional[Callable[[RunReport], None]] = None,
        on_outcome: Optional[Callable[[ActionOutcome], None]] = None,
    ):
        """
        Args:
            manifest: Validated desired state
            detector: Probe provider (defaults to one using a check-timeout runner)
            backend: Package backend (defaults to ``select_backend`` on the probed facts)
            runner: Command runner for actions
            dry_run: Probe and report without executing any action
            skip_dev_tools: Treat every RAM-gated entry as not applicable
            ssh_config_path: SSH client config to merge hosts into
            timeout: Per-action timeout in seconds (defaults to HOMESTEAD_ACTION_TIMEOUT)
            reporter: Called with the finished report in the REPORTING state
            on_outcome: Called after every recorded outcome (progress display)
        """
        config = get_config()
        self.manifest = manifest
        self.timeout = timeout if timeout is not None else config.action_timeout
        self.runner = runner or CommandRunner(default_timeout=self.timeout)
        self.detector = detector or SystemDetector(
            runner=CommandRunner(default_timeout=config.check_timeout)
        )
        self.backend = backend
        self.dry_run = dry_run
        self.skip_dev_tools = skip_dev_tools
        self.ssh_config_path = ssh_config_path
        self.reporter = reporter
        self.on_outcome = on_outcome

        self.state = DriverState.INIT
        self.facts: Optional[MachineFacts] = None
        self.report = RunReport(dry_run=dry_run)
        self._cancelled = False

    # -----------------------------
    #  Public API
    # -----------------------------
    def cancel(self) -> None:
        """Stop before the next action. The action in flight is not interrupted."""
        if not self._cancelled:
            logger.warning("Cancellation requested; stopping before the next action")
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> RunReport:
        """Execute one convergence run and return its report.

        Raises:
            UnsupportedPlatformError: No backend exists for this platform
            RuntimeError: The driver was already run
            Exception: Whatever the reporter callback raises
        """
        self._advance(DriverState.PROBING_FACTS)
        self._probe_facts()

        self._advance(DriverState.PROVISIONING_IDENTITY)
        if not self._stop_requested():
            self._provision_identity()

        self._advance(DriverState.CONVERGING_PACKAGES)
        for entry in list(self.manifest.packages) + list(self.manifest.services):
            if self._stop_requested():
                break
            self._converge_entry(entry)

        self._advance(DriverState.REPORTING)
        self.report.cancelled = self._cancelled
        self.report.finish()
        summary = self.report.summary()
        logger.info(
            "Run finished: "
            + ", ".join(f"{count} {status}" for status, count in sorted(summary.items()))
        )
        if self.reporter is not None:
            self.reporter(self.report)

        self._advance(DriverState.DONE)
        return self.report

    # -----------------------------
    #  States
    # -----------------------------
    def _advance(self, state: DriverState) -> None:
        if state.value <= self.state.value:
            raise RuntimeError(f"Illegal driver transition {self.state.name} -> {state.name}")
        logger.debug(f"Driver: {self.state.name} -> {state.name}")
        self.state = state

    def _probe_facts(self) -> None:
        if self.backend is None:
            platform_facts = MachineFacts(os_family=self.detector.probe_os_family())
            self.backend = select_backend(platform_facts, runner=self.runner, timeout=self.timeout)
        self.facts = self.detector.capture_facts(self.manifest, self.backend)
        self.report.facts = self.facts.to_dict()

    def _provision_identity(self) -> None:
        self._record(
            provision_ssh_key(
                self.manifest.ssh_identity,
                runner=self.runner,
                dry_run=self.dry_run,
                timeout=self.timeout,
            )
        )
        if self._stop_requested():
            return
        for outcome in merge_ssh_config(
            self.manifest.ssh_hosts,
            config_path=self.ssh_config_path,
            dry_run=self.dry_run,
        ):
            self._record(outcome)

    def _converge_entry(self, entry: Entry) -> None:
        is_service = isinstance(entry, ServiceEntry)
        phase = Phase.SERVICES if is_service else Phase.PACKAGES

        reason = self._reason_not_applicable(entry)
        if reason is not None:
            self._record(
                ActionOutcome(entry.name, OutcomeStatus.SKIPPED_NOT_APPLICABLE, reason,
                              required=entry.required, phase=phase)
            )
            return

        executor = ActionExecutor(
            self.backend,
            self.detector,
            runner=self.runner,
            dry_run=self.dry_run,
            timeout=self.timeout,
        )
        if is_service:
            outcome = executor.execute_service(entry)
        else:
            outcome = executor.execute_package(entry)
        self._record(outcome)

    # -----------------------------
    #  Helpers
    # -----------------------------
    def _reason_not_applicable(self, entry: Entry) -> Optional[str]:
        if self.skip_dev_tools and entry.when.ram_gated:
            return "development tools skipped (--skip-dev-tools)"
        reason = entry.when.reason_not_applicable(self.facts)
        if reason is not None:
            return reason
        missing = [name for name in entry.when.requires if not self._is_installed(name)]
        if missing:
            return f"requires {', '.join(missing)} (not installed)"
        return None

    def _is_installed(self, name: str) -> bool:
        """Re-probe an earlier entry's check now; the captured facts may be stale."""
        planned = self.report.get(name)
        if planned is not None and planned.status == OutcomeStatus.WOULD_APPLY:
            # Dry runs plan dependents as if this entry had been installed
            return True
        entry = self.manifest.find_entry(name)
        if entry is None:
            return False
        check = entry.effective_check if isinstance(entry, ServiceEntry) else entry.check
        return self.detector.probe_check(check, self.backend)

    def _record(self, outcome: ActionOutcome) -> None:
        self.report.add(outcome)
        if outcome.is_failure:
            logger.error(f"{outcome.target}: failed: {outcome.detail}")
        if self.on_outcome is not None:
            self.on_outcome(outcome)

    def _stop_requested(self) -> bool:
        return self._cancelled
