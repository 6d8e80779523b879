"""Anchored text insertion and marker detection.

The splice logic is a set of pure functions over file content so that every
match-count failure mode can be exercised without touching a filesystem.
:class:`AnchoredPatcher` wraps them with whole-file reads and atomic writes.

Content is decoded with ``surrogateescape`` so bytes that are not valid
UTF-8 survive a read/modify/write cycle unchanged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pvemod.core import write_atomic
from pvemod.errors import AnchorAmbiguousError, AnchorNotFoundError, BlockNotFoundError

logger = logging.getLogger(__name__)

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"

Position = Literal["before", "after"]


@dataclass(frozen=True)
class AnchorSpec:
    """Where a payload goes inside a target file.

    ``pattern`` is a regular expression (compiled with ``re.MULTILINE``) that
    must match exactly once. With ``whole_line`` the payload is placed at the
    start of the line holding the match (``before``) or after the end of the
    line holding the match (``after``) instead of at the match boundary.

    ``scope`` narrows the search: it must itself match exactly once, and the
    anchor is searched from the end of that match up to the next ``scope_end``
    match (or the end of the content).
    """

    pattern: str
    position: Position = "before"
    whole_line: bool = True
    scope: str | None = None
    scope_end: str | None = None


@dataclass(frozen=True)
class BlockBounds:
    """Line-level tokens that bracket an injected payload."""

    begin: str
    end: str


# ---------------------------------------------------------------------------
# Pure content operations
# ---------------------------------------------------------------------------


def _single_match(regex: re.Pattern[str], content: str, start: int, end: int) -> re.Match[str]:
    matches = list(regex.finditer(content, start, end))
    if not matches:
        raise AnchorNotFoundError(regex.pattern)
    if len(matches) > 1:
        raise AnchorAmbiguousError(regex.pattern, len(matches))
    return matches[0]


def _search_region(content: str, anchor: AnchorSpec) -> tuple[int, int]:
    if anchor.scope is None:
        return 0, len(content)
    scope = _single_match(re.compile(anchor.scope, re.MULTILINE), content, 0, len(content))
    start = scope.end()
    end = len(content)
    if anchor.scope_end is not None:
        stop = re.compile(anchor.scope_end, re.MULTILINE).search(content, start)
        if stop is not None:
            end = stop.start()
    return start, end


def find_anchor(content: str, anchor: AnchorSpec) -> int:
    """Return the insertion offset for *anchor* within *content*.

    Raises AnchorNotFoundError on zero matches and AnchorAmbiguousError on
    more than one, for the scope as well as for the anchor itself.
    """
    start, end = _search_region(content, anchor)
    match = _single_match(re.compile(anchor.pattern, re.MULTILINE), content, start, end)
    if not anchor.whole_line:
        return match.start() if anchor.position == "before" else match.end()
    if anchor.position == "before":
        return content.rfind("\n", 0, match.start()) + 1
    newline = content.find("\n", max(match.end() - 1, match.start()))
    return len(content) if newline == -1 else newline + 1


def splice(content: str, anchor: AnchorSpec, payload: str) -> str:
    """Return *content* with *payload* inserted at the anchor.

    Nothing outside the insertion point changes. Whole-line payloads are
    terminated with a newline so the following line keeps its own.
    """
    offset = find_anchor(content, anchor)
    if anchor.whole_line:
        if not payload.endswith("\n"):
            payload += "\n"
        if offset == len(content) and content and not content.endswith("\n"):
            payload = "\n" + payload
    return content[:offset] + payload + content[offset:]


def _marker_regex(marker: str) -> re.Pattern[str]:
    # Only word-character edges need a boundary; punctuation delimits itself.
    head = r"(?<!\w)" if re.match(r"\w", marker) else ""
    tail = r"(?!\w)" if re.search(r"\w$", marker) else ""
    return re.compile(head + re.escape(marker) + tail)


def contains_marker(content: str, marker: str) -> bool:
    """True when *marker* occurs in *content* as a whole token."""
    return _marker_regex(marker).search(content) is not None


def cut_block(content: str, marker: str, bounds: BlockBounds) -> str:
    """Remove the lines from the first ``bounds.begin`` line through the next ``bounds.end`` line.

    The block must contain *marker*; otherwise the bounds belong to something
    else and nothing is removed.
    """
    lines = content.splitlines(keepends=True)
    begin = next((i for i, line in enumerate(lines) if bounds.begin in line), None)
    if begin is None:
        raise BlockNotFoundError(marker, f"begin token {bounds.begin!r} not found")
    end = next((j for j in range(begin + 1, len(lines)) if bounds.end in lines[j]), None)
    if end is None:
        if any(bounds.end in line for line in lines[:begin]):
            raise BlockNotFoundError(marker, f"end token {bounds.end!r} precedes begin token")
        raise BlockNotFoundError(marker, f"end token {bounds.end!r} not found")
    if not contains_marker("".join(lines[begin : end + 1]), marker):
        raise BlockNotFoundError(marker, "marker is not inside the bounded block")
    return "".join(lines[:begin] + lines[end + 1 :])


def cut_first_block(content: str, marker: str, bounds: Sequence[BlockBounds]) -> str:
    """Apply :func:`cut_block` with the first of *bounds* that locates the block.

    Raises BlockNotFoundError listing every attempt when none of them does.
    """
    reasons: list[str] = []
    for candidate in bounds:
        try:
            return cut_block(content, marker, candidate)
        except BlockNotFoundError as exc:
            reasons.append(exc.reason)
    raise BlockNotFoundError(marker, "; ".join(reasons) or "no block bounds given")


# ---------------------------------------------------------------------------
# File operations
# ---------------------------------------------------------------------------


def read_content(path: Path) -> str:
    return path.read_bytes().decode(_ENCODING, _ERRORS)


class AnchoredPatcher:
    """Apply and detect payloads in target files."""

    def is_present(self, path: Path, marker: str) -> bool:
        return contains_marker(read_content(path), marker)

    def insert(self, path: Path, anchor: AnchorSpec, payload: str) -> None:
        """Splice *payload* into *path* at the anchor and replace the file atomically."""
        content = read_content(path)
        try:
            new_content = splice(content, anchor, payload)
        except (AnchorNotFoundError, AnchorAmbiguousError) as exc:
            exc.path = path
            exc.args = (f"{exc.args[0]} in {path}",)
            raise
        write_atomic(path, new_content.encode(_ENCODING, _ERRORS))
        logger.info("Inserted payload into %s", path, extra={"target": str(path)})

    def remove(self, path: Path, marker: str, bounds: Sequence[BlockBounds]) -> None:
        """Delete the bounded block carrying *marker* from *path*, trying each of *bounds* in order."""
        content = read_content(path)
        try:
            new_content = cut_first_block(content, marker, bounds)
        except BlockNotFoundError as exc:
            exc.path = path
            exc.args = (f"{exc.args[0]} ({path})",)
            raise
        write_atomic(path, new_content.encode(_ENCODING, _ERRORS))
        logger.info("Removed %s block from %s", marker, path, extra={"target": str(path)})
