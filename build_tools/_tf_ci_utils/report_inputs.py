"""Inputs for the Terraform test report.

The workflow passes step outcomes, exit codes and output file names to the
report step as environment variables. `TerraformReportInputs.from_env()`
turns them into a typed struct, applying the defaults below for anything the
workflow leaves unset or empty.

| Field                  | Env var                | Default                 |
| ---------------------- | ---------------------- | ----------------------- |
| workdir                | WORKDIR                | (required)              |
| tf_version             | TFVERSION_VERSION      | (required)              |
| tf_platform            | TFVERSION_PLATFORM     | {sys.platform}_{arch}   |
| fmt_outcome            | TFFMT_OUTCOME          | unknown                 |
| init_outcome           | TFINIT_OUTCOME         | unknown                 |
| validate_outcome       | TFVALIDATE_OUTCOME     | unknown                 |
| validate_stdout_file   | TFVALIDATE_STDOUT_FILE | tfvalidate_stdout.out   |
| validate_stderr_file   | TFVALIDATE_STDERR_FILE | tfvalidate_stderr.out   |
| plan_outcome           | TFPLAN_OUTCOME         | unknown                 |
| plan_exit_code         | TFPLAN_EXITCODE        | unknown                 |
| plan_stdout_file       | TFPLAN_STDOUT_FILE     | tfplan_stdout.out       |
| plan_stderr_file       | TFPLAN_STDERR_FILE     | tfplan_stderr.out       |
| plan_file              | TFPLAN_FILE            | tfplan.txt              |
| test_outcome           | TFTEST_OUTCOME         | unknown                 |
| test_exit_code         | TFTEST_EXITCODE        | unknown                 |
| test_stdout_file       | TFTEST_STDOUT_FILE     | tftest_stdout.out       |
| test_stderr_file       | TFTEST_STDERR_FILE     | tftest_stderr.out       |
| owner                  | OWNER                  | ""                      |
"""

from dataclasses import dataclass, fields
import os
import platform as platform_module
import sys
from typing import Mapping

UNKNOWN = "unknown"

# Exit code written by the plan/test steps when the command failed. Terraform
# plan uses 2 for "succeeded with changes", which is not a failure.
FAILED_EXIT_CODE = "1"


def default_platform() -> str:
    return f"{sys.platform}_{platform_module.machine().lower()}"


@dataclass(frozen=True)
class TerraformReportInputs:
    workdir: str
    tf_version: str
    tf_platform: str = ""
    fmt_outcome: str = UNKNOWN
    init_outcome: str = UNKNOWN
    validate_outcome: str = UNKNOWN
    validate_stdout_file: str = "tfvalidate_stdout.out"
    validate_stderr_file: str = "tfvalidate_stderr.out"
    plan_outcome: str = UNKNOWN
    plan_exit_code: str = UNKNOWN
    plan_stdout_file: str = "tfplan_stdout.out"
    plan_stderr_file: str = "tfplan_stderr.out"
    plan_file: str = "tfplan.txt"
    test_outcome: str = UNKNOWN
    test_exit_code: str = UNKNOWN
    test_stdout_file: str = "tftest_stdout.out"
    test_stderr_file: str = "tftest_stderr.out"
    owner: str = ""

    def __post_init__(self):
        for name in ("workdir", "tf_version"):
            if not getattr(self, name):
                raise ValueError(f"Input required and not supplied: {ENV_VARS[name]}")
        if not self.tf_platform:
            object.__setattr__(self, "tf_platform", default_platform())

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TerraformReportInputs":
        if environ is None:
            environ = os.environ
        values = {}
        for f in fields(cls):
            value = environ.get(ENV_VARS[f.name], "").strip()
            # Empty values fall back to the field default, like unset ones.
            if value:
                values[f.name] = value
        values.setdefault("workdir", "")
        values.setdefault("tf_version", "")
        return cls(**values)

    @property
    def plan_failed(self) -> bool:
        return self.plan_exit_code == FAILED_EXIT_CODE

    @property
    def test_failed(self) -> bool:
        return self.test_exit_code == FAILED_EXIT_CODE

    @property
    def tests_ran(self) -> bool:
        return self.test_exit_code != UNKNOWN


ENV_VARS = {
    "workdir": "WORKDIR",
    "tf_version": "TFVERSION_VERSION",
    "tf_platform": "TFVERSION_PLATFORM",
    "fmt_outcome": "TFFMT_OUTCOME",
    "init_outcome": "TFINIT_OUTCOME",
    "validate_outcome": "TFVALIDATE_OUTCOME",
    "validate_stdout_file": "TFVALIDATE_STDOUT_FILE",
    "validate_stderr_file": "TFVALIDATE_STDERR_FILE",
    "plan_outcome": "TFPLAN_OUTCOME",
    "plan_exit_code": "TFPLAN_EXITCODE",
    "plan_stdout_file": "TFPLAN_STDOUT_FILE",
    "plan_stderr_file": "TFPLAN_STDERR_FILE",
    "plan_file": "TFPLAN_FILE",
    "test_outcome": "TFTEST_OUTCOME",
    "test_exit_code": "TFTEST_EXITCODE",
    "test_stdout_file": "TFTEST_STDOUT_FILE",
    "test_stderr_file": "TFTEST_STDERR_FILE",
    "owner": "OWNER",
}
