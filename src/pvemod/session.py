"""Install and uninstall sessions.

Each session is a small state machine that runs start to finish and ends in
``DONE`` or ``ABORTED``. State is re-derived from the target files on every
run; nothing is remembered between runs.

Install never rolls back: if patching fails after some targets were patched,
those stay patched and the outcome lists them together with the snapshots
to restore from. Uninstall restores whole-file snapshots, which also reverts
any other modification applied after the snapshot was taken, so it asks
for confirmation when it finds one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pvemod.backup import BackupStore, FileSnapshot
from pvemod.core import ModConfig
from pvemod.errors import (
    AlreadyInstalledError,
    AnchorError,
    BackupVerificationError,
    BlockNotFoundError,
    HardwareNotFoundError,
    NotInstalledError,
    PrivilegeError,
    PveModError,
)
from pvemod.host import HostServices, Operator
from pvemod.logging import setup_logging
from pvemod.patcher import AnchoredPatcher
from pvemod.payload import (
    BLOCK_BEGIN,
    BLOCK_END,
    MODIFICATION_NAME,
    RenderOptions,
    Thresholds,
    parse_unit,
    render_payloads,
)
from pvemod.registry import ModificationRegistry
from pvemod.targets import TargetFile, build_targets

logger = logging.getLogger(__name__)


class InstallStep(str, Enum):
    START = "start"
    CHECKED = "checked"
    CONFIGURED = "configured"
    BACKED_UP = "backed_up"
    PATCHED = "patched"
    SERVICE_RELOADED = "service_reloaded"
    DONE = "done"
    ABORTED = "aborted"


class UninstallStep(str, Enum):
    START = "start"
    CHECKED = "checked"
    CONFLICT_CHECKED = "conflict_checked"
    RESTORED = "restored"
    SERVICE_RELOADED = "service_reloaded"
    DONE = "done"
    ABORTED = "aborted"


class OutcomeKind(str, Enum):
    INSTALLED = "installed"
    ALREADY_INSTALLED = "already_installed"
    NOT_INSTALLED = "not_installed"
    RESTORED = "restored"
    ABORTED = "aborted"


@dataclass
class InstallationOutcome:
    """What a session did. Reported to the caller, never persisted."""

    kind: OutcomeKind
    reason: str = ""
    step: str | None = None
    error: BaseException | None = None
    snapshots: list[FileSnapshot] = field(default_factory=list)
    patched: list[Path] = field(default_factory=list)
    restored: list[Path] = field(default_factory=list)
    fallback_removed: list[Path] = field(default_factory=list)
    reloaded: bool | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.INSTALLED, OutcomeKind.RESTORED)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok or self.cancelled else 1


class _Session:
    """Shared wiring for both sessions."""

    def __init__(
        self,
        config: ModConfig,
        *,
        host: HostServices,
        operator: Operator,
        targets: list[TargetFile] | None = None,
        patcher: AnchoredPatcher | None = None,
        registry: ModificationRegistry | None = None,
        store: BackupStore | None = None,
        file_logging: bool = False,
    ) -> None:
        self.config = config
        self.host = host
        self.operator = operator
        self.targets = targets if targets is not None else build_targets(config)
        self.patcher = patcher or AnchoredPatcher()
        self.registry = registry or ModificationRegistry(
            self.targets, self.patcher, extra_markers=config.extra_markers
        )
        self.store = store
        self.file_logging = file_logging
        self.modification = MODIFICATION_NAME
        self._current_target: TargetFile | None = None

    @property
    def marker(self) -> str:
        return self.registry.get(self.modification).marker

    def _check_privileges(self) -> None:
        if not self.host.is_privileged():
            raise PrivilegeError()
        self.operator.info("Root privileges verified.")

    def _open_store(self, *, create: bool) -> BackupStore:
        if self.store is None:
            directory = BackupStore.resolve_directory(self.config.backup_dir)
            if self.config.backup_dir:
                self.operator.info(f"Using custom backup directory: {directory}")
            else:
                self.operator.info(f"Using default backup directory: {directory}")
            self.store = BackupStore(directory)
        if create and BackupStore.ensure_directory(self.store.directory):
            self.operator.info(f"Created backup directory: {self.store.directory}")
        if self.file_logging and self.store.directory.is_dir():
            setup_logging(self.store.directory)
        return self.store

    def _reload_service(self, outcome: InstallationOutcome) -> None:
        self.operator.info(f"Restarting {self.config.service}...")
        outcome.reloaded = self.host.reload()
        if outcome.reloaded:
            logger.info("Reloaded %s", self.config.service, extra={"modification": self.modification})
        else:
            self.operator.warn(
                f"Failed to restart {self.config.service}. Run 'systemctl restart {self.config.service}' manually."
            )

    def _fail(self, outcome: InstallationOutcome, exc: BaseException, step: str, kind: OutcomeKind) -> InstallationOutcome:
        outcome.kind = kind
        outcome.error = exc
        outcome.step = step
        outcome.reason = str(exc)
        logger.error(
            "%s aborted during %s: %s",
            type(self).__name__,
            step,
            exc,
            extra={
                "modification": self.modification,
                "step": step,
                "outcome": kind.value,
                "error": type(exc).__name__,
            },
        )
        self.operator.error(outcome.reason)
        return outcome


class InstallSession(_Session):
    """Start → Checked → Configured → BackedUp → Patched → ServiceReloaded → Done."""

    state: InstallStep = InstallStep.START

    def run(self) -> InstallationOutcome:
        outcome = InstallationOutcome(kind=OutcomeKind.INSTALLED)
        step = InstallStep.CHECKED
        self.operator.section("=== Preparing NVIDIA GPU mod installation ===")
        logger.info("Install started", extra={"modification": self.modification})
        try:
            self._check()
            self.state = step

            step = InstallStep.CONFIGURED
            payloads = self._configure()
            self.state = step

            step = InstallStep.BACKED_UP
            self._backup(outcome)
            self.state = step

            step = InstallStep.PATCHED
            self._patch(payloads, outcome)
            self.state = step

            step = InstallStep.SERVICE_RELOADED
            self.operator.section("=== Finalizing installation ===")
            self._reload_service(outcome)
            self.state = step
        except AlreadyInstalledError as exc:
            self.state = InstallStep.ABORTED
            return self._fail(outcome, exc, step.value, OutcomeKind.ALREADY_INSTALLED)
        except (PveModError, OSError) as exc:
            self.state = InstallStep.ABORTED
            self._fail(outcome, exc, step.value, OutcomeKind.ABORTED)
            self._explain_install_failure(outcome, exc)
            return outcome

        self.state = InstallStep.DONE
        logger.info(
            "Install completed",
            extra={
                "modification": self.modification,
                "outcome": outcome.kind.value,
                "files": [str(p) for p in outcome.patched],
            },
        )
        self.operator.info("Installation completed successfully.")
        self.operator.section("IMPORTANT: Clear your browser cache (Ctrl+Shift+R) to see the changes.")
        return outcome

    def _check(self) -> None:
        self._check_privileges()
        installed = self.registry.installed_targets(self.modification)
        if installed:
            raise AlreadyInstalledError(self.modification, [t.path for t in installed])

    def _configure(self) -> dict[str, str]:
        self.operator.section("=== Detecting NVIDIA GPUs ===")
        gpus = self.host.query_gpus()
        if not gpus:
            raise HardwareNotFoundError("No NVIDIA GPUs detected by nvidia-smi.")
        self.operator.info(f"Detected {len(gpus)} NVIDIA GPU(s):")
        for gpu in gpus:
            self.operator.info(f"  GPU {gpu.index}: {gpu.name}")

        self.operator.section("=== Display Settings ===")
        unit = parse_unit(self.operator.ask("Display temperatures in Celsius [C] or Fahrenheit [f]? (C/f)"))
        self.operator.info("Using Fahrenheit." if unit == "F" else "Using Celsius.")
        thresholds = Thresholds(warning=self.config.temp_warning, critical=self.config.temp_critical)
        return render_payloads(RenderOptions(unit=unit), thresholds)

    def _backup(self, outcome: InstallationOutcome) -> None:
        self.operator.section("=== Creating backups of modified files ===")
        store = self._open_store(create=True)
        stamp = store.next_timestamp()
        for target in self.targets:
            self._current_target = target
            snap = store.snapshot(target.path, modification=self.modification, timestamp=stamp)
            outcome.snapshots.append(snap)
            self.operator.info(f"Created backup: {snap.path}")
        self._current_target = None

    def _patch(self, payloads: dict[str, str], outcome: InstallationOutcome) -> None:
        self.operator.section("=== Inserting NVIDIA GPU code ===")
        for target in self.targets:
            self._current_target = target
            self.patcher.insert(target.path, target.anchor, payloads[target.key])
            if not self.patcher.is_present(target.path, self.marker):
                raise PveModError(f"Insertion verification failed: {self.marker} not found in {target.path}")
            outcome.patched.append(target.path)
            self.operator.info(f'NVIDIA GPU code added to "{target.path}".')
        self._current_target = None

    def _explain_install_failure(self, outcome: InstallationOutcome, exc: BaseException) -> None:
        target = self._current_target
        if isinstance(exc, AnchorError) and target is not None:
            self.operator.warn(
                f"{target.path} does not have the expected layout; the host application may have been upgraded."
            )
        if outcome.patched:
            self.operator.warn("The following files were patched before the failure and remain patched:")
            for path in outcome.patched:
                self.operator.warn(f"  - {path}")
            self.operator.warn("Run 'pvemod uninstall' or restore them manually:")
            for snap in outcome.snapshots:
                if snap.source in outcome.patched:
                    self.operator.warn(f"  cp {snap.path} {snap.source}")
        elif outcome.snapshots or isinstance(exc, BackupVerificationError):
            self.operator.warn("No target file was modified.")


class UninstallSession(_Session):
    """Start → Checked → ConflictChecked → Restored → ServiceReloaded → Done."""

    state: UninstallStep = UninstallStep.START

    def run(self) -> InstallationOutcome:
        outcome = InstallationOutcome(kind=OutcomeKind.RESTORED)
        step = UninstallStep.CHECKED
        self.operator.section("=== Uninstalling NVIDIA GPU Mod ===")
        logger.info("Uninstall started", extra={"modification": self.modification})
        try:
            self._check()
            self.state = step

            step = UninstallStep.CONFLICT_CHECKED
            snapshots = self._latest_snapshots()
            if not self._confirm_conflicts(snapshots):
                self.state = UninstallStep.ABORTED
                return self._cancel(outcome, step.value)
            self.state = step

            step = UninstallStep.RESTORED
            self._restore(outcome, snapshots)
            self.state = step

            step = UninstallStep.SERVICE_RELOADED
            self._reload_service(outcome)
            self.state = step
        except NotInstalledError as exc:
            self.state = UninstallStep.ABORTED
            return self._fail(outcome, exc, step.value, OutcomeKind.NOT_INSTALLED)
        except (PveModError, OSError) as exc:
            self.state = UninstallStep.ABORTED
            self._fail(outcome, exc, step.value, OutcomeKind.ABORTED)
            self._explain_uninstall_failure(outcome, exc)
            return outcome

        self.state = UninstallStep.DONE
        logger.info(
            "Uninstall completed",
            extra={
                "modification": self.modification,
                "outcome": outcome.kind.value,
                "files": [str(p) for p in outcome.restored + outcome.fallback_removed],
            },
        )
        self.operator.info("Uninstallation completed.")
        self.operator.section("IMPORTANT: Clear your browser cache (Ctrl+Shift+R) to see the changes.")
        return outcome

    def _check(self) -> None:
        self._check_privileges()
        if not self.registry.is_installed(self.modification):
            raise NotInstalledError(self.modification)
        self._open_store(create=False)

    def _latest_snapshots(self) -> dict[TargetFile, FileSnapshot | None]:
        store = self._open_store(create=False)
        return {t: store.latest_snapshot(self.modification, t.filename) for t in self.targets}

    def conflicts(self) -> dict[TargetFile, set[str]]:
        """Other known modifications present in each target, omitting clean targets."""
        found: dict[TargetFile, set[str]] = {}
        for target in self.targets:
            others = self.registry.coexisting_modifications(target, self.modification)
            if others:
                found[target] = others
        return found

    def _confirm_conflicts(self, snapshots: dict[TargetFile, FileSnapshot | None]) -> bool:
        conflicts = self.conflicts()
        if not conflicts:
            return True
        names = sorted(set().union(*conflicts.values()))
        self.operator.warn(f"Other PVE mods detected: {', '.join(names)}")
        # Only a whole-file restore drops the other mods; cutting our block keeps them.
        overwritten = [t for t in conflicts if snapshots.get(t) is not None]
        if not overwritten:
            self.operator.info(
                f"No backup exists for the affected files; only the {self.modification} block will be removed "
                "and the other mods are kept."
            )
            return True
        files = ", ".join(t.filename for t in overwritten)
        self.operator.warn(
            f"Restoring {files} from backup will remove ALL mods installed after the "
            f"{self.modification} backup was created."
        )
        self.operator.section("You have two options:")
        self.operator.info("1) Continue - Restore backup, then reinstall other mods afterward")
        self.operator.info(f"2) Cancel - Manually remove {self.modification} code from files instead")
        answer = self.operator.ask("Continue with backup restoration? (y/N)")
        return answer.strip().lower() in ("y", "yes")

    def _cancel(self, outcome: InstallationOutcome, step: str) -> InstallationOutcome:
        outcome.kind = OutcomeKind.ABORTED
        outcome.cancelled = True
        outcome.step = step
        outcome.reason = "Uninstall cancelled."
        logger.info(
            "Uninstall cancelled by operator",
            extra={"modification": self.modification, "step": step, "outcome": "cancelled"},
        )
        self.operator.info(outcome.reason)
        self.operator.section("To manually remove, edit these files:")
        for target in self.targets:
            self.operator.info(f"  - {target.path} (delete the lines from '{BLOCK_BEGIN}' through '{BLOCK_END}')")
        return outcome

    def _restore(self, outcome: InstallationOutcome, snapshots: dict[TargetFile, FileSnapshot | None]) -> None:
        self.operator.info("Restoring modified files...")
        store = self._open_store(create=False)
        for target in self.targets:
            self._current_target = target
            snap = snapshots.get(target)
            if snap is not None:
                self.operator.section(f"Restoring {target.filename} from backup: {snap.path}")
                store.restore(snap, target.path)
                outcome.restored.append(target.path)
                self.operator.info(f"Restored {target.filename} successfully.")
                continue
            if not self.patcher.is_present(target.path, self.marker):
                self.operator.info(f"No {target.filename} backup found and {target.path} is not modified; skipping.")
                continue
            self.operator.warn(f"No {target.filename} backup found. Attempting manual removal...")
            self.patcher.remove(target.path, self.marker, target.bounds)
            outcome.fallback_removed.append(target.path)
            self.operator.warn(f"Removed the {self.modification} block from {target.path}; restoration was best-effort.")
        self._current_target = None

    def _explain_uninstall_failure(self, outcome: InstallationOutcome, exc: BaseException) -> None:
        target = self._current_target
        if isinstance(exc, BlockNotFoundError | BackupVerificationError) and target is not None:
            self.operator.warn(f"{target.path} could not be restored automatically.")
            if target.reinstall_hint:
                self.operator.warn(f"You can reinstall the host package to restore it: {target.reinstall_hint}")
        if outcome.restored or outcome.fallback_removed:
            self.operator.warn("Already restored before the failure:")
            for path in outcome.restored + outcome.fallback_removed:
                self.operator.warn(f"  - {path}")
