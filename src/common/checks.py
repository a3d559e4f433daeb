from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from .console import success


Status = Literal["pass", "warn", "fail"]

PASS: Status = "pass"
WARN: Status = "warn"
FAIL: Status = "fail"

_MARKS = {PASS: "✅", WARN: "⚠️ ", FAIL: "❌"}


@dataclass
class CheckResult:
    name: str
    status: Status
    detail: str = ""

    def line(self) -> str:
        text = f"{_MARKS[self.status]} {self.name}"
        return f"{text}: {self.detail}" if self.detail else text


@dataclass
class CheckReport:
    """
    Ordered pass/warn/fail results of a verification run.

    Each result is logged as one line when recorded. Warnings never fail the
    report; `ok` is True iff no result has status "fail".
    """

    title: str = ""
    results: List[CheckResult] = field(default_factory=list)
    logger: Optional[logging.Logger] = None

    def add(self, name: str, status: Status, detail: str = "") -> CheckResult:
        result = CheckResult(name=name, status=status, detail=detail)
        self.results.append(result)
        log = self.logger or logging.getLogger(__name__)
        if status == PASS:
            success(log, "%s", result.line())
        elif status == WARN:
            log.warning("%s", result.line())
        else:
            log.error("%s", result.line())
        return result

    def passed(self, name: str, detail: str = "") -> CheckResult:
        return self.add(name, PASS, detail)

    def warn(self, name: str, detail: str = "") -> CheckResult:
        return self.add(name, WARN, detail)

    def fail(self, name: str, detail: str = "") -> CheckResult:
        return self.add(name, FAIL, detail)

    @property
    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if r.status == FAIL]

    @property
    def warnings(self) -> List[CheckResult]:
        return [r for r in self.results if r.status == WARN]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


__all__ = [
    "PASS",
    "WARN",
    "FAIL",
    "CheckResult",
    "CheckReport",
]
