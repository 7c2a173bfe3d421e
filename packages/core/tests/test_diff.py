"""Tests for unified diff normalization and line mapping."""

import pytest

from prledger_core.diff import (
    LineKind,
    LineMapper,
    build_line_mapper,
    context_window,
    map_line,
    normalize_diff,
    parse_patch,
    parse_unified_diff,
    post_image_lines,
    render_patch,
    split_lines,
)
from prledger_core.errors import MalformedDiffError

GIT_DIFF = """\
diff --git a/src/Order.cs b/src/Order.cs
index 1111111..2222222 100644
--- a/src/Order.cs
+++ b/src/Order.cs
@@ -10,4 +10,5 @@ public class Order
 public void Submit()
 {
-    Save();
+    Validate();
+    Save();
 }
@@ -40,3 +41,3 @@ public class Order
 int Total()
-    return sum;
+    return sum + tax;
 }
diff --git a/docs/readme.md b/docs/readme.md
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/docs/readme.md
@@ -0,0 +1,2 @@
+# Orders
+Usage notes.
"""


class TestParseUnifiedDiff:
    def test_files_sorted_by_path(self):
        files = parse_unified_diff(GIT_DIFF)
        assert [f.path for f in files] == ["docs/readme.md", "src/Order.cs"]

    def test_added_file_status(self):
        readme = parse_unified_diff(GIT_DIFF)[0]
        assert readme.status == "added"
        assert readme.hunks[0].new_count == 2
        assert [e.kind for e in readme.hunks[0].lines] == [LineKind.ADD, LineKind.ADD]

    def test_hunk_line_numbers(self):
        order = parse_unified_diff(GIT_DIFF)[1]
        first = order.hunks[0]
        assert (first.old_start, first.old_count, first.new_start, first.new_count) == (10, 4, 10, 5)
        assert first.section == "public class Order"
        added = [e for e in first.lines if e.kind is LineKind.ADD]
        assert [e.new_line for e in added] == [12, 13]
        removed = [e for e in first.lines if e.kind is LineKind.REMOVE]
        assert removed[0].old_line == 12
        assert removed[0].new_line is None

    def test_hunks_ordered_by_post_image_start(self):
        diff = (
            "--- a/app.py\n+++ b/app.py\n"
            "@@ -50,1 +50,1 @@\n-b\n+B\n"
            "@@ -5,1 +5,1 @@\n-a\n+A\n"
        )
        hunks = parse_unified_diff(diff)[0].hunks
        assert [h.new_start for h in hunks] == [5, 50]

    def test_plain_unified_diff_without_git_header(self):
        diff = "--- app.py\t2024-01-01\n+++ app.py\t2024-01-02\n@@ -1 +1 @@\n-x = 1\n+x = 2\n"
        files = parse_unified_diff(diff)
        assert files[0].path == "app.py"
        assert files[0].hunks[0].old_count == 1

    def test_rename_recorded(self):
        diff = (
            "diff --git a/old/name.py b/new/name.py\n"
            "similarity index 90%\n"
            "rename from old/name.py\n"
            "rename to new/name.py\n"
            "--- a/old/name.py\n+++ b/new/name.py\n"
            "@@ -1,2 +1,2 @@\n import os\n-x = 1\n+x = 2\n"
        )
        file_diff = parse_unified_diff(diff)[0]
        assert file_diff.path == "new/name.py"
        assert file_diff.old_path == "old/name.py"
        assert file_diff.status == "renamed"

    def test_pure_rename_has_no_hunks(self):
        diff = (
            "diff --git a/a.py b/b.py\n"
            "similarity index 100%\n"
            "rename from a.py\n"
            "rename to b.py\n"
        )
        file_diff = parse_unified_diff(diff)[0]
        assert file_diff.status == "renamed"
        assert file_diff.hunks == ()

    def test_deleted_file(self):
        diff = (
            "diff --git a/gone.py b/gone.py\n"
            "deleted file mode 100644\n"
            "--- a/gone.py\n+++ /dev/null\n"
            "@@ -1,2 +0,0 @@\n-a\n-b\n"
        )
        file_diff = parse_unified_diff(diff)[0]
        assert file_diff.path == "gone.py"
        assert file_diff.status == "removed"

    def test_binary_file_marked(self):
        diff = "diff --git a/logo.png b/logo.png\nindex 1..2 100644\nBinary files a/logo.png and b/logo.png differ\n"
        file_diff = parse_unified_diff(diff)[0]
        assert file_diff.binary is True
        assert file_diff.hunks == ()

    def test_git_binary_patch_payload_skipped(self):
        diff = (
            "diff --git a/logo.png b/logo.png\n"
            "GIT binary patch\n"
            "literal 12\n"
            "zcmZ?wbhEHbWMp7uU\n"
            "\n"
            "diff --git a/app.py b/app.py\n"
            "--- a/app.py\n+++ b/app.py\n"
            "@@ -1 +1 @@\n-a\n+b\n"
        )
        files = parse_unified_diff(diff)
        assert [f.path for f in files] == ["app.py", "logo.png"]
        assert files[1].binary is True

    def test_no_newline_marker_ignored(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1 +1 @@\n-a\n\\ No newline at end of file\n+b\n\\ No newline at end of file\n"
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert [e.text for e in hunk.lines] == ["a", "b"]

    def test_removed_line_starting_with_dashes_is_body(self):
        """A removed SQL comment line "-- note" is hunk body, not a file header."""
        diff = "--- a/q.sql\n+++ b/q.sql\n@@ -1,2 +1,1 @@\n--- note\n select 1;\n"
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert hunk.lines[0].kind is LineKind.REMOVE
        assert hunk.lines[0].text == "-- note"

    def test_preamble_before_first_file_skipped(self):
        diff = "From abc Mon Sep 17 00:00:00 2001\nSubject: fix\n\n" + GIT_DIFF
        assert len(parse_unified_diff(diff)) == 2

    def test_empty_input(self):
        assert parse_unified_diff("") == []


class TestLineBreaks:
    def test_form_feed_is_line_content(self):
        diff = (
            "diff --git a/src/mod.py b/src/mod.py\n"
            "--- a/src/mod.py\n+++ b/src/mod.py\n"
            "@@ -1,3 +1,3 @@\n import os\n \x0c\n-x = 1\n+x = 2\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert [e.text for e in hunk.lines] == ["import os", "\x0c", "x = 1", "x = 2"]

    def test_unicode_line_separator_is_line_content(self):
        file_diff = parse_patch("web/strings.js", "@@ -1 +1 @@\n-const s = 'a\u2028b';\n+const s = 'a\u2029b';\n")
        assert [e.text for e in file_diff.hunks[0].lines] == ["const s = 'a\u2028b';", "const s = 'a\u2029b';"]

    def test_crlf_diff(self):
        diff = "--- a/x.py\r\n+++ b/x.py\r\n@@ -1 +1 @@\r\n-a\r\n+b\r\n"
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert [e.text for e in hunk.lines] == ["a", "b"]

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("", []),
            ("a\n", ["a"]),
            ("a\nb", ["a", "b"]),
            ("a\r\n\nb\n", ["a", "", "b"]),
            ("\x0c\n\x1e\x85\n", ["\x0c", "\x1e\x85"]),
            ("a\rb\n", ["a\rb"]),
        ],
    )
    def test_split_lines(self, text, expected):
        assert split_lines(text) == expected


class TestMalformedDiff:
    def test_unparseable_hunk_header(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,2 +1,2\n-a\n+b\n"
        with pytest.raises(MalformedDiffError, match="unparseable hunk header") as exc:
            parse_unified_diff(diff)
        assert exc.value.line_number == 3

    def test_hunk_shorter_than_header(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,3 +1,3 @@\n a\n"
        with pytest.raises(MalformedDiffError, match="ends before"):
            parse_unified_diff(diff)

    def test_hunk_longer_than_header(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,1 +1,1 @@\n-a\n+b\n+c\n"
        with pytest.raises(MalformedDiffError, match="longer than its header"):
            parse_unified_diff(diff)

    def test_overlapping_hunks(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,3 +1,3 @@\n a\n b\n c\n@@ -2,2 +2,2 @@\n b\n c\n"
        with pytest.raises(MalformedDiffError, match="overlapping"):
            parse_unified_diff(diff)

    def test_hunk_before_any_file_header(self):
        with pytest.raises(MalformedDiffError, match="before any file header"):
            parse_unified_diff("@@ -1 +1 @@\n-a\n+b\n")

    def test_garbage_inside_file_block(self):
        diff = "diff --git a/x.py b/x.py\n--- a/x.py\n+++ b/x.py\nthis is not a diff line\n"
        with pytest.raises(MalformedDiffError):
            parse_unified_diff(diff)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_patch("x.py", "@@ nonsense @@\n")


class TestNormalizeDiff:
    def test_hunks_ordered_by_file_then_position(self):
        hunks = normalize_diff(GIT_DIFF)
        assert [(h.path, h.new_start) for h in hunks] == [
            ("docs/readme.md", 1),
            ("src/Order.cs", 10),
            ("src/Order.cs", 41),
        ]

    def test_deterministic(self):
        assert normalize_diff(GIT_DIFF) == normalize_diff(GIT_DIFF)


class TestParsePatch:
    def test_hunk_only_patch(self):
        patch = "@@ -1,2 +1,3 @@\n import os\n+import sys\n x = 1"
        file_diff = parse_patch("app.py", patch)
        assert file_diff.path == "app.py"
        assert file_diff.hunks[0].new_count == 3

    def test_omitted_counts_default_to_one(self):
        file_diff = parse_patch("app.py", "@@ -3 +3 @@\n-a\n+b\n")
        hunk = file_diff.hunks[0]
        assert hunk.old_count == 1
        assert hunk.new_count == 1

    def test_render_patch_round_trips_hunks(self):
        patch = "@@ -1,2 +1,3 @@ def main():\n import os\n+import sys\n x = 1"
        assert render_patch(parse_patch("app.py", patch)) == patch


class TestViews:
    def test_post_image_lines(self):
        file_diff = parse_patch("app.py", "@@ -1,2 +1,3 @@\n a\n+b\n c\n")
        assert post_image_lines(file_diff) == {1: "a", 2: "b", 3: "c"}

    def test_context_window_clips_to_known_lines(self):
        lines = {n: f"line {n}" for n in range(1, 11)}
        assert context_window(lines, 2, 2, radius=3) == tuple(f"line {n}" for n in range(1, 6))
        assert context_window(lines, 9, 10, radius=3) == tuple(f"line {n}" for n in range(6, 11))


class TestLineMapping:
    def test_lines_before_hunk_unchanged(self):
        file_diff = parse_patch("app.py", "@@ -10,2 +10,4 @@\n a\n+b\n+c\n d\n")
        assert map_line(file_diff, 5) == 5

    def test_lines_after_hunk_shift_by_net_change(self):
        file_diff = parse_patch("app.py", "@@ -10,2 +10,4 @@\n a\n+b\n+c\n d\n")
        assert map_line(file_diff, 20) == 22

    def test_context_line_inside_hunk(self):
        file_diff = parse_patch("app.py", "@@ -10,2 +10,4 @@\n a\n+b\n+c\n d\n")
        assert map_line(file_diff, 11) == 13

    def test_removed_line_maps_to_none(self):
        file_diff = parse_patch("app.py", "@@ -10,3 +10,2 @@\n a\n-b\n c\n")
        assert map_line(file_diff, 11) is None
        assert map_line(file_diff, 12) == 11

    def test_pure_insertion_keeps_anchor_line(self):
        file_diff = parse_patch("app.py", "@@ -5,0 +6,2 @@\n+x\n+y\n")
        assert map_line(file_diff, 5) == 5
        assert map_line(file_diff, 6) == 8

    def test_mapper_identity_for_untouched_files(self):
        mapper = LineMapper(parse_unified_diff("--- a/x.py\n+++ b/x.py\n@@ -1 +1,2 @@\n a\n+b\n"))
        assert mapper("other.py", 7) == 7
        assert mapper("x.py", 3) == 4

    def test_mapper_follows_renames(self):
        diff = (
            "diff --git a/old.py b/new.py\n"
            "rename from old.py\nrename to new.py\n"
            "--- a/old.py\n+++ b/new.py\n"
            "@@ -1,1 +1,2 @@\n+import os\n a\n"
        )
        mapper = LineMapper(parse_unified_diff(diff))
        assert mapper.path_for("old.py") == "new.py"
        assert mapper.path_for("untouched.py") == "untouched.py"
        assert mapper("old.py", 1) == 2

    def test_build_line_mapper(self):
        diff = "diff --git a/a.py b/b.py\nrename from a.py\nrename to b.py\n"
        mapper = build_line_mapper(parse_unified_diff(diff))
        assert isinstance(mapper, LineMapper)
        assert mapper.renames == {"a.py": "b.py"}
