"""Severity policy: findings in test code are always reported as low severity.

The policy is a pure, total function of (finding, file classification). It
never looks at the category and never fails. Whatever severity the reviewer
collaborator proposed for a production file passes through untouched.

Classification is by path alone, so it works the same for every language:
  - a directory segment following a test-directory convention
    (tests/, __tests__/, spec/, Order.Tests/ ...);
  - a file name following a test-file convention
    (test_order.py, order_test.go, order.spec.ts, OrderTests.cs ...);
  - a project-level marker configured under ``test_paths`` in .prledger.yml.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum
from pathlib import PurePosixPath

from prledger_core.findings import Finding, Severity
from prledger_core.utils.paths import matches_any

_TEST_DIR_NAMES = frozenset({"test", "tests", "testing", "__tests__", "spec", "specs", "e2e", "testdata"})

# .NET and Java test projects: "Order.Tests/", "Billing.UnitTests/", "Api.Specs/".
_TEST_DIR_SUFFIX_RE = re.compile(r"[._-]?(unit|integration)?(tests?|specs?)$", re.IGNORECASE)

# Stem conventions, matched case-sensitively where the convention is PascalCase.
_TEST_STEM_RE = re.compile(r"(?:^test_|^tests?$|_test$|_spec$|\.test$|\.spec$|[a-z0-9](?:Tests?|Specs?|IT)$)")


class FileKind(str, Enum):
    PRODUCTION = "production"
    TEST = "test"


class TestFileClassifier:
    """Decide whether a path is production or test code."""

    __test__ = False  # not a pytest test class despite the name

    def __init__(self, test_patterns: Iterable[str] = ()):
        self._patterns = tuple(test_patterns)

    def classify(self, path: str) -> FileKind:
        return FileKind.TEST if self.is_test_path(path) else FileKind.PRODUCTION

    def is_test_path(self, path: str) -> bool:
        if self._patterns and matches_any(path, self._patterns):
            return True

        pure = PurePosixPath(path)
        for segment in pure.parts[:-1]:
            if segment.lower() in _TEST_DIR_NAMES:
                return True
            if "." in segment or "-" in segment or "_" in segment:
                tail = re.split(r"[._-]", segment)[-1]
                if _TEST_DIR_SUFFIX_RE.fullmatch(tail):
                    return True

        # Drop only the final extension so "order.spec.ts" keeps its ".spec" marker.
        name = pure.name
        stem = name.split(".", 1)[0] if name.count(".") <= 1 else name.rsplit(".", 1)[0]
        if stem == "conftest":
            return True
        return bool(_TEST_STEM_RE.search(stem))


def apply_severity_policy(finding: Finding, kind: FileKind) -> Finding:
    """Clamp severity to low iff the finding's file is test code."""
    if kind is FileKind.TEST and finding.severity is not Severity.LOW:
        return finding.with_severity(Severity.LOW)
    return finding


def enforce_severity_policy(findings: Iterable[Finding], classifier: TestFileClassifier) -> list[Finding]:
    return [apply_severity_policy(f, classifier.classify(f.path)) for f in findings]
