"""Startup preflight checks for the listener host."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from config.settings import Settings

BLUETOOTH_SYSFS = Path("/sys/class/bluetooth")


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


@dataclass
class PreflightReport:
    checks: list[CheckResult]

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.ok]


def _run(cmd: list[str]) -> tuple[int, str, str]:
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as exc:
        return 127, "", str(exc)
    return proc.returncode, proc.stdout.strip(), proc.stderr.strip()


def resolve_executable(name: str) -> str | None:
    if os.sep in name:
        path = name
    else:
        path = shutil.which(name)
    if path and os.path.isfile(path) and os.access(path, os.X_OK):
        return path
    return None


def _check_command(command: tuple[str, ...]) -> CheckResult:
    if not command:
        return CheckResult("command_resolvable", False, "no command configured")
    path = resolve_executable(command[0])
    if path is None:
        return CheckResult("command_resolvable", False, f"{command[0]} is not an executable file or not on PATH")
    return CheckResult("command_resolvable", True, f"{command[0]} -> {path}")


def _check_transports(settings: Settings) -> CheckResult:
    if not settings.transports:
        return CheckResult("transports_configured", False, "no transport configured")
    return CheckResult("transports_configured", True, ", ".join(settings.transports))


def _check_adapter_exists(adapter: str) -> CheckResult:
    if (BLUETOOTH_SYSFS / adapter).exists():
        return CheckResult("ble_adapter_exists", True, f"{adapter} exists")
    return CheckResult("ble_adapter_exists", False, f"{adapter} not found under {BLUETOOTH_SYSFS}")


def _check_bluez_active() -> CheckResult:
    rc, out, err = _run(["systemctl", "is-active", "bluetooth"])
    if rc == 0 and out == "active":
        return CheckResult("bluez_service", True, "bluetooth.service is active")
    detail = err or out or f"systemctl rc={rc}"
    return CheckResult("bluez_service", False, detail)


def run_preflight_checks(settings: Settings) -> PreflightReport:
    checks = [
        _check_command(settings.command),
        _check_transports(settings),
    ]
    if settings.ble is not None:
        checks.append(_check_adapter_exists(settings.ble.adapter))
        checks.append(_check_bluez_active())
    return PreflightReport(checks=checks)


def preflight_rows(report: PreflightReport) -> list[tuple[str, str, str]]:
    return [("PASS" if item.ok else "FAIL", item.name, item.detail) for item in report.checks]


def format_preflight_report(report: PreflightReport) -> str:
    lines = ["[preflight] listener checks"]
    for status, name, detail in preflight_rows(report):
        lines.append(f"[preflight] {status:<4} {name}: {detail}")
    lines.append(f"[preflight] overall: {'PASS' if report.ok else 'FAIL'}")
    return "\n".join(lines)
