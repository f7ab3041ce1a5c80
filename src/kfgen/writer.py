"""Write rendered artifacts to disk without clobbering hand-written code.

Every generated file carries its generated content between two marker
lines::

    # >>> kfgen generated: begin
    ...
    # <<< kfgen generated: end

On regeneration only the text between the markers is replaced; anything a
user added above or below them survives. A file that exists but has no
markers was not written by kfgen and is refused with
:class:`~kfgen.exceptions.WriteError`.

Each :class:`~kfgen.generator.render.ArtifactSet` is committed atomically:
all new contents are first staged as temp files next to their targets and
only then renamed into place. If any step fails, files already replaced are
restored to their previous content and the remaining temp files removed.
Files whose content would not change are left alone, so their mtime is
untouched and regeneration produces no spurious diffs.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterable, NamedTuple, Optional

from pydantic import BaseModel, Field

from kfgen.exceptions import WriteError
from kfgen.generator.render import ArtifactSet
from kfgen.output import get_output

BEGIN_MARKER = "# >>> kfgen generated: begin"
END_MARKER = "# <<< kfgen generated: end"


class WriteReport(BaseModel):
    """Paths touched by a write, in write order."""

    written: list[Path] = Field(default_factory=list)
    unchanged: list[Path] = Field(default_factory=list)

    def extend(self, other: WriteReport) -> None:
        self.written.extend(other.written)
        self.unchanged.extend(other.unchanged)


class PlannedFile(NamedTuple):
    path: Path
    content: str
    previous: Optional[str]

    @property
    def changed(self) -> bool:
        return self.content != self.previous


def merge_generated(existing: Optional[str], generated: str, path: Path) -> str:
    """Place *generated* between the markers of *existing*.

    Args:
        existing: Current file content, or ``None`` for a new file.
        generated: Rendered content without markers.
        path: Target file, used in error messages.

    Raises:
        WriteError: If *existing* lacks a well-formed marker pair.
    """
    block = f"{BEGIN_MARKER}\n{generated.rstrip(chr(10))}\n{END_MARKER}\n"
    if existing is None:
        return block

    begin = existing.find(BEGIN_MARKER)
    end = existing.find(END_MARKER, begin + 1) if begin != -1 else -1
    if begin == -1 or end == -1:
        raise WriteError(
            f"Refusing to overwrite {path}: it has no kfgen generated markers "
            "(hand-written file?)",
            path=str(path),
        )
    if existing.find(BEGIN_MARKER, begin + 1) != -1:
        raise WriteError(f"{path} contains more than one kfgen generated block", path=str(path))

    after = existing[end + len(END_MARKER):]
    if after.startswith("\n"):
        after = after[1:]
    return existing[:begin] + block + after


def plan_set(artifact_set: ArtifactSet) -> list[PlannedFile]:
    """Compute the final content of every file in *artifact_set*.

    Raises:
        WriteError: If an existing file cannot be read or has no markers.
    """
    planned = []
    for artifact in artifact_set.artifacts:
        previous = _read_existing(artifact.path)
        content = merge_generated(previous, artifact.content, artifact.path)
        planned.append(PlannedFile(artifact.path, content, previous))
    return planned


def write_set(artifact_set: ArtifactSet) -> WriteReport:
    """Atomically write one artifact set.

    Raises:
        WriteError: On any filesystem failure; the set's files are left
            with their previous contents.
    """
    report = WriteReport()
    changes = []
    for planned in plan_set(artifact_set):
        if planned.changed:
            changes.append(planned)
        else:
            report.unchanged.append(planned.path)
    if not changes:
        get_output().debug(f"{artifact_set.name}: up to date")
        return report

    staged: list[tuple[PlannedFile, str]] = []
    committed: list[PlannedFile] = []
    try:
        for planned in changes:
            staged.append((planned, _stage(planned)))
        for planned, tmp_path in staged:
            os.replace(tmp_path, planned.path)
            committed.append(planned)
    except OSError as exc:
        _discard(tmp for planned, tmp in staged if planned not in committed)
        _roll_back(committed)
        raise WriteError(
            f"Failed to write {artifact_set.name}: {exc}",
            path=getattr(exc, "filename", None),
        ) from exc

    report.written.extend(planned.path for planned in committed)
    get_output().debug(f"{artifact_set.name}: wrote {len(committed)} file(s)")
    return report


def write(artifact_sets: Iterable[ArtifactSet]) -> WriteReport:
    """Write each set in order; a failing set aborts the remaining ones."""
    report = WriteReport()
    for artifact_set in artifact_sets:
        report.extend(write_set(artifact_set))
    return report


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _read_existing(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise WriteError(f"Cannot read existing file {path}: {exc}", path=str(path)) from exc


def _stage(planned: PlannedFile) -> str:
    """Write *planned* to a temp file beside its target; return the temp path."""
    planned.path.parent.mkdir(parents=True, exist_ok=True)
    fd = tempfile.NamedTemporaryFile(
        mode="w",
        dir=planned.path.parent,
        prefix=f".{planned.path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    )
    try:
        fd.write(planned.content)
        fd.flush()
        os.fsync(fd.fileno())
    except OSError:
        fd.close()
        os.unlink(fd.name)
        raise
    fd.close()
    return fd.name


def _discard(tmp_paths: Iterable[str]) -> None:
    for tmp_path in tmp_paths:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass


def _roll_back(committed: list[PlannedFile]) -> None:
    for planned in reversed(committed):
        try:
            if planned.previous is None:
                planned.path.unlink()
            else:
                planned.path.write_text(planned.previous, encoding="utf-8")
        except OSError as exc:
            get_output().error(f"Could not restore {planned.path}: {exc}")
