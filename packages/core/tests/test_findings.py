"""Tests for the finding record model and the collaborator output adapter."""

import dataclasses

import pytest

from prledger_core.errors import InvalidFindingError
from prledger_core.findings import (
    Category,
    Finding,
    Location,
    Severity,
    compute_fingerprint,
    finding_sort_key,
    findings_from_raw,
    normalize_title,
)


def _raw(**overrides):
    raw = {
        "category": "correctness",
        "severity": "high",
        "title": "Null dereference in Submit",
        "explanation": "order.Customer can be null here.",
        "file": "src/Order.cs",
        "start_line": 10,
        "end_line": 12,
        "symbol": "Order.Submit",
    }
    raw.update(overrides)
    return raw


class TestFingerprint:
    def test_ignores_line_numbers(self):
        a = findings_from_raw(_raw(start_line=10, end_line=12))[0]
        b = findings_from_raw(_raw(start_line=40, end_line=41))[0]
        assert a.fingerprint == b.fingerprint

    def test_ignores_title_noise(self):
        a = compute_fingerprint("security", "Unchecked `input` at line 42!", "app.py")
        b = compute_fingerprint("security", "unchecked input at line 57", "app.py")
        assert a == b

    def test_distinguishes_category_path_and_symbol(self):
        base = compute_fingerprint("security", "SQL injection", "app.py", "query")
        assert base != compute_fingerprint("correctness", "SQL injection", "app.py", "query")
        assert base != compute_fingerprint("security", "SQL injection", "db.py", "query")
        assert base != compute_fingerprint("security", "SQL injection", "app.py", "execute")

    def test_path_normalized(self):
        assert compute_fingerprint("style", "x", "./src/a.py") == compute_fingerprint("style", "x", "src/a.py")

    def test_symbol_call_parens_ignored(self):
        assert compute_fingerprint("style", "x", "a.py", "run()") == compute_fingerprint("style", "x", "a.py", "run")

    def test_stable_length(self):
        assert len(compute_fingerprint("style", "x", "a.py")) == 16

    def test_normalize_title(self):
        assert normalize_title("  Missing   NULL check (line 7) ") == "missing null check line #"


class TestFindingModel:
    def test_is_immutable(self):
        finding = findings_from_raw(_raw())[0]
        with pytest.raises(dataclasses.FrozenInstanceError):
            finding.severity = Severity.LOW

    def test_with_severity_returns_new_instance(self):
        finding = findings_from_raw(_raw())[0]
        lowered = finding.with_severity(Severity.LOW)
        assert lowered.severity is Severity.LOW
        assert finding.severity is Severity.HIGH
        assert lowered.fingerprint == finding.fingerprint

    def test_severity_rank(self):
        assert Severity.HIGH.rank > Severity.MEDIUM.rank > Severity.LOW.rank

    def test_sort_key_orders_by_severity_then_path_then_line(self):
        def make(sev, path, line):
            return Finding(Category.STYLE, sev, "t", "e", Location(path, line, line))

        findings = [
            make(Severity.LOW, "a.py", 1),
            make(Severity.HIGH, "b.py", 9),
            make(Severity.HIGH, "b.py", 2),
            make(Severity.MEDIUM, "a.py", 5),
            make(Severity.HIGH, "a.py", 30),
        ]
        ordered = sorted(findings, key=finding_sort_key)
        assert [(f.severity, f.path, f.location.start_line) for f in ordered] == [
            (Severity.HIGH, "a.py", 30),
            (Severity.HIGH, "b.py", 2),
            (Severity.HIGH, "b.py", 9),
            (Severity.MEDIUM, "a.py", 5),
            (Severity.LOW, "a.py", 1),
        ]


class TestFindingsFromRaw:
    def test_valid_record(self):
        (finding,) = findings_from_raw(_raw(suggestion="Guard it.", fix_patch="-a\n+b"))
        assert finding.category is Category.CORRECTNESS
        assert finding.severity is Severity.HIGH
        assert finding.location == Location("src/Order.cs", 10, 12, "Order.Submit")
        assert finding.suggestion == "Guard it."
        assert finding.fix_patch == "-a\n+b"

    def test_optional_fields_default(self):
        raw = _raw()
        del raw["end_line"]
        del raw["symbol"]
        (finding,) = findings_from_raw(raw)
        assert finding.location.end_line == 10
        assert finding.location.symbol is None
        assert finding.suggestion == ""
        assert finding.fix_patch is None

    def test_legacy_line_and_comment_keys(self):
        raw = {"category": "style", "severity": "low", "title": "Long line", "comment": "Wrap it.", "line": 3}
        (finding,) = findings_from_raw(raw, default_path="app.py")
        assert finding.path == "app.py"
        assert finding.location.start_line == 3
        assert finding.explanation == "Wrap it."

    def test_severity_and_category_aliases(self):
        (finding,) = findings_from_raw(_raw(severity="Critical", category="bug"))
        assert finding.severity is Severity.HIGH
        assert finding.category is Category.CORRECTNESS

    def test_digit_string_lines_accepted(self):
        (finding,) = findings_from_raw(_raw(start_line="7", end_line="9"))
        assert (finding.location.start_line, finding.location.end_line) == (7, 9)

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"category": "vibes"}, "category"),
            ({"category": None}, "category"),
            ({"severity": "urgent"}, "severity"),
            ({"title": "   "}, "title"),
            ({"explanation": None}, "explanation"),
            ({"file": None}, "file"),
            ({"start_line": 0}, "line"),
            ({"start_line": True}, "line"),
            ({"start_line": "ten"}, "line"),
            ({"start_line": 12, "end_line": 10}, "end_line"),
            ({"symbol": 5}, "symbol"),
            ({"suggestion": ["a"]}, "suggestion"),
        ],
    )
    def test_invalid_records_rejected(self, overrides, field):
        with pytest.raises(InvalidFindingError) as exc:
            findings_from_raw(_raw(**overrides))
        assert exc.value.field == field

    def test_missing_line_rejected(self):
        raw = _raw()
        del raw["start_line"]
        with pytest.raises(InvalidFindingError):
            findings_from_raw(raw)

    def test_non_dict_rejected(self):
        with pytest.raises(InvalidFindingError):
            findings_from_raw(["not", "a", "finding"])

    def test_cross_file_record_split_per_location(self):
        raw = _raw(
            locations=[
                {"file": "src/Order.cs", "start_line": 10, "end_line": 12},
                {"file": "tests/OrderTests.cs", "start_line": 30},
            ]
        )
        findings = findings_from_raw(raw)
        assert [f.path for f in findings] == ["src/Order.cs", "tests/OrderTests.cs"]
        assert all(f.severity is Severity.HIGH for f in findings)
        assert findings[0].fingerprint != findings[1].fingerprint

    def test_duplicate_locations_collapsed(self):
        loc = {"file": "a.py", "start_line": 1}
        assert len(findings_from_raw(_raw(locations=[loc, dict(loc)]))) == 1

    def test_empty_locations_rejected(self):
        with pytest.raises(InvalidFindingError) as exc:
            findings_from_raw(_raw(locations=[]))
        assert exc.value.field == "locations"

    def test_context_attached_per_location(self):
        calls = []

        def context_for(path, start, end):
            calls.append((path, start, end))
            return ("line a", "line b")

        (finding,) = findings_from_raw(_raw(), context_for=context_for)
        assert calls == [("src/Order.cs", 10, 12)]
        assert finding.context == ("line a", "line b")
