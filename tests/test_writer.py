"""Tests for kfgen.writer -- marker merging and atomic artifact sets."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from kfgen.exceptions import WriteError
from kfgen.generator.render import Artifact, ArtifactSet
from kfgen.writer import BEGIN_MARKER, END_MARKER, merge_generated, plan_set, write, write_set


def _set(*files: tuple[Path, str], name: str = "Alert") -> ArtifactSet:
    return ArtifactSet(
        name=name, artifacts=tuple(Artifact(path=p, content=c) for p, c in files)
    )


# ---------------------------------------------------------------------------
# merge_generated
# ---------------------------------------------------------------------------


class TestMergeGenerated:
    def test_new_file_is_wrapped(self, tmp_path: Path) -> None:
        merged = merge_generated(None, "x = 1\n", tmp_path / "a.py")
        assert merged == f"{BEGIN_MARKER}\nx = 1\n{END_MARKER}\n"

    def test_content_outside_markers_survives(self, tmp_path: Path) -> None:
        existing = f"# header\n{BEGIN_MARKER}\nold = 1\n{END_MARKER}\n\ndef helper():\n    pass\n"
        merged = merge_generated(existing, "new = 2\n", tmp_path / "a.py")
        assert merged == (
            f"# header\n{BEGIN_MARKER}\nnew = 2\n{END_MARKER}\n\ndef helper():\n    pass\n"
        )

    def test_file_without_markers_is_refused(self, tmp_path: Path) -> None:
        with pytest.raises(WriteError, match="no kfgen generated markers"):
            merge_generated("print('mine')\n", "x = 1\n", tmp_path / "a.py")

    def test_unterminated_block_is_refused(self, tmp_path: Path) -> None:
        with pytest.raises(WriteError):
            merge_generated(f"{BEGIN_MARKER}\nx = 1\n", "x = 2\n", tmp_path / "a.py")

    def test_duplicate_blocks_are_refused(self, tmp_path: Path) -> None:
        block = f"{BEGIN_MARKER}\nx = 1\n{END_MARKER}\n"
        with pytest.raises(WriteError, match="more than one"):
            merge_generated(block + block, "x = 2\n", tmp_path / "a.py")

    def test_regenerating_is_idempotent(self, tmp_path: Path) -> None:
        first = merge_generated(None, "x = 1\n", tmp_path / "a.py")
        assert merge_generated(first, "x = 1\n", tmp_path / "a.py") == first


# ---------------------------------------------------------------------------
# write_set / write
# ---------------------------------------------------------------------------


class TestWriteSet:
    def test_writes_new_files(self, tmp_path: Path, quiet_output) -> None:
        target = tmp_path / "pkg" / "v1" / "alert.py"
        report = write_set(_set((target, "x = 1\n")))
        assert report.written == [target]
        assert target.read_text() == f"{BEGIN_MARKER}\nx = 1\n{END_MARKER}\n"
        assert not list(target.parent.glob(".*.tmp"))

    def test_unchanged_file_is_not_touched(self, tmp_path: Path, quiet_output) -> None:
        target = tmp_path / "alert.py"
        write_set(_set((target, "x = 1\n")))
        os.utime(target, (1_000_000, 1_000_000))

        report = write_set(_set((target, "x = 1\n")))
        assert report.written == []
        assert report.unchanged == [target]
        assert target.stat().st_mtime == 1_000_000

    def test_hand_written_file_aborts_whole_set(self, tmp_path: Path, quiet_output) -> None:
        fresh = tmp_path / "crd.yaml"
        mine = tmp_path / "alert.py"
        mine.write_text("# hand written\n")

        with pytest.raises(WriteError):
            write_set(_set((fresh, "kind: X\n"), (mine, "x = 1\n")))
        assert not fresh.exists()
        assert mine.read_text() == "# hand written\n"

    def test_failed_rename_rolls_back(
        self, tmp_path: Path, quiet_output, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        first = tmp_path / "a.py"
        second = tmp_path / "b.py"
        write_set(_set((first, "a = 1\n")))
        original = first.read_text()

        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError("disk full")
            real_replace(src, dst)

        monkeypatch.setattr("kfgen.writer.os.replace", flaky_replace)
        with pytest.raises(WriteError, match="disk full"):
            write_set(_set((first, "a = 2\n"), (second, "b = 2\n")))

        assert first.read_text() == original
        assert not second.exists()
        assert not list(tmp_path.glob(".*.tmp"))

    def test_plan_reports_changes(self, tmp_path: Path) -> None:
        target = tmp_path / "a.py"
        (planned,) = plan_set(_set((target, "a = 1\n")))
        assert planned.previous is None
        assert planned.changed

    def test_write_collects_reports(self, tmp_path: Path, quiet_output) -> None:
        a, b = tmp_path / "a.py", tmp_path / "b.py"
        report = write([_set((a, "a = 1\n"), name="A"), _set((b, "b = 1\n"), name="B")])
        assert report.written == [a, b]
