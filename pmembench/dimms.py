from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .system import MountInfo, PmemBenchError, ToolError, run_command

LOGGER = logging.getLogger("pmembench.dimms")

DIMM_HEADER_RE = re.compile(r"^-+\s*DimmID\s*=\s*(\S+?)\s*-+$")
DIMM_COUNT_RE = re.compile(r'"dimm"\s*:\s*"')
PMEM_DEVICE_PREFIX = "/dev/pmem"
MIN_NAMESPACE_DIMMS = 1
MAX_NAMESPACE_DIMMS = 6

# (lower, upper, nominal GiB, type); bounds are exclusive
CAPACITY_CLASSES: tuple[tuple[float, float, int, str], ...] = (
    (116, 128, 128, "SDP"),
    (245, 256, 256, "DDP"),
    (500, 512, 512, "QDP"),
)

# (lower, upper, label); bounds are exclusive, values in mW
POWER_BUDGET_CLASSES: tuple[tuple[int, int, str], ...] = (
    (9500, 11500, "10W"),
    (11501, 14500, "12W"),
    (14501, 17500, "15W"),
    (17501, 21000, "18W"),
)


class DimmValidationError(PmemBenchError):
    """Raised when the PMem modules are not in a state worth benchmarking."""


@dataclass
class DimmInfo:
    dimm_id: str
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def device_locator(self) -> str:
        return self.fields.get("DeviceLocator", "")

    @property
    def label(self) -> str:
        return f"{self.dimm_id}({self.device_locator})"

    @property
    def health_state(self) -> str | None:
        return _first_token(self.fields.get("HealthState"))

    @property
    def ars_status(self) -> str | None:
        return _first_token(self.fields.get("ARSStatus"))

    @property
    def capacity_gib(self) -> float | None:
        value = _first_token(self.fields.get("Capacity"))
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None

    @property
    def avg_power_budget_mw(self) -> int | None:
        value = _first_token(self.fields.get("AvgPowerBudget"))
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None


@dataclass(frozen=True)
class DimmSummary:
    count: int
    capacity_gib: int
    dimm_type: str
    avg_power_budget_mw: int | None
    power_class: str | None


def parse_dimm_info(text: str) -> list[DimmInfo]:
    """Parse the block layout printed by 'ipmctl show -a -dimm'."""
    dimms: list[DimmInfo] = []
    current: DimmInfo | None = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        header = DIMM_HEADER_RE.match(line)
        if header:
            current = DimmInfo(dimm_id=header.group(1))
            dimms.append(current)
            continue
        if current is None:
            continue
        key, sep, value = line.partition("=")
        if sep:
            current.fields[key.strip()] = value.strip()
    return dimms


def classify_capacity(capacity_gib: float) -> tuple[int, str]:
    for lower, upper, nominal, dimm_type in CAPACITY_CLASSES:
        if lower < capacity_gib < upper:
            return nominal, dimm_type
    raise DimmValidationError(f"DIMM capacity {capacity_gib:g}GiB is not supported")


def classify_power_budget(budget_mw: int) -> str | None:
    for lower, upper, label in POWER_BUDGET_CLASSES:
        if lower < budget_mw < upper:
            return label
    return None


def validate_dimms(dimms: list[DimmInfo]) -> DimmSummary:
    if not dimms:
        raise DimmValidationError("validate_config: Could not get a list of PMem Devices.")

    unhealthy = [dimm for dimm in dimms if dimm.health_state != "Healthy"]
    for dimm in unhealthy:
        LOGGER.error(
            "PMem DIMM %s is not in a 'Healthy' state. "
            "Please repair this DIMM and try again.",
            dimm.label,
        )
    if unhealthy:
        raise DimmValidationError(f"{len(unhealthy)} PMem DIMM(s) are not Healthy")
    LOGGER.info("PMem DIMM Health: Healthy")

    capacities = {dimm.capacity_gib for dimm in dimms}
    if len(capacities) != 1:
        raise DimmValidationError(
            "This system has mixed capacity PMem DIMMs. "
            "It is not recommended to benchmark this config."
        )
    capacity = capacities.pop()
    if capacity is None:
        raise DimmValidationError("validate_config: Could not read the PMem DIMM capacity.")
    nominal, dimm_type = classify_capacity(capacity)
    LOGGER.info("PMem DIMM Capacity: %dGiB", nominal)

    scrubbing = []
    for dimm in dimms:
        LOGGER.debug("validate_config: ARS_Status for %s = %s", dimm.label, dimm.ars_status)
        if dimm.ars_status != "Completed":
            LOGGER.warning(
                "Address Range Scrub (ARS) has not yet completed for %s. "
                "Please wait for ARS to complete before benchmarking.",
                dimm.label,
            )
            scrubbing.append(dimm)
    if scrubbing:
        LOGGER.info(
            "Run 'ndctl wait-scrub all' and wait for ARS to complete before running benchmark."
        )
        raise DimmValidationError("Address Range Scrub (ARS) has not completed")
    LOGGER.info("ARS Status: Completed")

    budgets = [dimm.avg_power_budget_mw for dimm in dimms if dimm.avg_power_budget_mw is not None]
    budget = None
    power_class = None
    if budgets:
        if len(set(budgets)) != 1 or len(budgets) != len(dimms):
            raise DimmValidationError(
                "PMem are not in same power budget. Please use same power budget for all PMem."
            )
        budget = budgets[0]
        power_class = classify_power_budget(budget)
        if power_class is None:
            LOGGER.info("PMem DIMM power budget of '%d' is not supported", budget)
        LOGGER.info("PMem DIMM AvgPowerBudget: %d", budget)
    else:
        LOGGER.info("PMem DIMM AvgPowerBudget: Not Available")

    return DimmSummary(
        count=len(dimms),
        capacity_gib=nominal,
        dimm_type=dimm_type,
        avg_power_budget_mw=budget,
        power_class=power_class,
    )


def save_dimm_info(ipmctl: str, output_path: Path) -> list[DimmInfo]:
    try:
        text = run_command([ipmctl, "show", "-a", "-dimm"])
    except PmemBenchError as exc:
        raise DimmValidationError(
            f"validate_config: 'ipmctl show -a -dimm' failed ({exc}). "
            "Cannot generate dimm information."
        ) from exc
    output_path.write_text(text, encoding="utf-8")
    return parse_dimm_info(text)


def region_from_device(device: str) -> str:
    if not device.startswith(PMEM_DEVICE_PREFIX):
        raise DimmValidationError(f"Don't understand dev path {device}.")
    return device[len(PMEM_DEVICE_PREFIX):]


def count_namespace_dimms(
    mount: MountInfo | None,
    ndctl: str,
    ipmctl: str,
    socket: int,
    override: int | None = None,
    prompt: Callable[[str], str] = input,
) -> int:
    """Find how many PMem modules back the namespace behind the mount."""
    if mount is None:
        raise DimmValidationError("Don't understand dev path <not mounted>.")
    region = region_from_device(mount.device)
    count = len(DIMM_COUNT_RE.findall(_fallback_output([ndctl, "list", "-DR", "-r", region])))

    if count <= 0:
        LOGGER.info("Using ipmctl to determine the number of PMem devices")
        LOGGER.info("ASSUMING NAMESPACE IS ON SOCKET %d!", socket)
        topology = _fallback_output([ipmctl, "show", "-topology"])
        count = sum(
            1
            for line in topology.splitlines()
            if "Logical Non-Volatile Device" in line and f"CPU{socket}" in line
        )

    if count <= 0:
        if override is None:
            LOGGER.info("Unable to automatically determine the number of PMem devices in the namespace")
            try:
                answer = prompt("Please enter the number of PMem devices: ")
                override = int(answer.strip())
            except EOFError as exc:
                raise DimmValidationError(
                    "No PMem device count available on stdin. Use --dimms to specify it."
                ) from exc
            except ValueError as exc:
                raise DimmValidationError(
                    f"Invalid PMem device count {answer!r}. Use --dimms to specify it."
                ) from exc
        count = override
        if count < MIN_NAMESPACE_DIMMS:
            raise DimmValidationError(
                f"Cannot have < {MIN_NAMESPACE_DIMMS} PMem in the namespace"
            )
        if count > MAX_NAMESPACE_DIMMS:
            raise DimmValidationError(
                f"Cannot have > {MAX_NAMESPACE_DIMMS} PMem in the namespace"
            )

    LOGGER.info("PMem device count in namespace for %s: %d", mount.mount_point, count)
    return count


def firmware_report(ipmctl: str) -> str:
    return run_command([ipmctl, "show", "-firmware", "-dimm"])


def _fallback_output(args: list[str]) -> str:
    # a failing probe counts as zero devices so the next source is tried
    try:
        return run_command(args)
    except ToolError as exc:
        LOGGER.info("%s", exc)
        return ""


def _first_token(value: str | None) -> str | None:
    if not value:
        return None
    return value.split()[0]
