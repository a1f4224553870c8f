"""
Diff Engine Module

Line-level diffing of two versions of a file.

Design Decisions:
- Classic longest-common-subsequence table over whole lines
- Backtracking prefers matches, then additions, then removals, which keeps
  removed lines above the added lines that replace them
- Output is a pair of equal-length columns so every row renders side by side
- The same alignment drives the unified-diff text sent to the LLM
- Async callers align in the threadpool so the event loop keeps serving
"""

import re
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import DiffLine, DiffLineType, FileDiff, FileVersions, SideBySideDiff

logger = get_logger(__name__)

LINE_SPLIT_PATTERN = re.compile(r"\r?\n")

# LCS is O(n*m) in time and memory; refuse pathological inputs
MAX_DIFF_CELLS = 4_000_000


class DiffEngineError(Exception):
    """Raised when two texts cannot be aligned."""
    pass


def split_lines(text: Optional[str]) -> List[str]:
    """Split text on LF or CRLF; None is treated as empty text."""
    return LINE_SPLIT_PATTERN.split(text or "")


def _lcs_table(source: List[str], target: List[str]) -> List[List[int]]:
    rows = len(source)
    cols = len(target)
    table = [[0] * (cols + 1) for _ in range(rows + 1)]

    for i in range(1, rows + 1):
        source_line = source[i - 1]
        row = table[i]
        previous = table[i - 1]
        for j in range(1, cols + 1):
            if source_line == target[j - 1]:
                row[j] = previous[j - 1] + 1
            else:
                row[j] = max(previous[j], row[j - 1])

    return table


def build_side_by_side_diff(source: Optional[str], target: Optional[str]) -> SideBySideDiff:
    """
    Align two texts line by line.

    Args:
        source: Base text (left column)
        target: Updated text (right column)

    Returns:
        SideBySideDiff whose left and right columns have the same length

    Raises:
        DiffEngineError: If the inputs are too large to align
    """
    source_lines = split_lines(source)
    target_lines = split_lines(target)

    if (len(source_lines) + 1) * (len(target_lines) + 1) > MAX_DIFF_CELLS:
        raise DiffEngineError(
            f"Files too large to diff: {len(source_lines)} x {len(target_lines)} lines"
        )

    table = _lcs_table(source_lines, target_lines)

    left: List[DiffLine] = []
    right: List[DiffLine] = []

    i = len(source_lines)
    j = len(target_lines)

    while i > 0 or j > 0:
        if i > 0 and j > 0 and source_lines[i - 1] == target_lines[j - 1]:
            left.append(DiffLine(text=source_lines[i - 1], line_number=i, type=DiffLineType.SAME))
            right.append(DiffLine(text=target_lines[j - 1], line_number=j, type=DiffLineType.SAME))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or table[i][j - 1] >= table[i - 1][j]):
            left.append(DiffLine(type=DiffLineType.EMPTY))
            right.append(DiffLine(text=target_lines[j - 1], line_number=j, type=DiffLineType.ADDED))
            j -= 1
        else:
            left.append(DiffLine(text=source_lines[i - 1], line_number=i, type=DiffLineType.REMOVED))
            right.append(DiffLine(type=DiffLineType.EMPTY))
            i -= 1

    left.reverse()
    right.reverse()

    return SideBySideDiff(left=left, right=right)


def build_unified_diff_text(base_text: Optional[str], updated_text: Optional[str], file_path: str) -> str:
    """
    Render the alignment of two texts as unified-diff style text.

    There are no hunk headers: every line of the file is emitted with a
    "+", "-" or " " prefix.
    """
    diff = build_side_by_side_diff(base_text, updated_text)
    lines = [f"--- a/{file_path}", f"+++ b/{file_path}"]

    for left_line, right_line in zip(diff.left, diff.right):
        if right_line.type == DiffLineType.ADDED:
            lines.append(f"+{right_line.text}")
        elif left_line.type == DiffLineType.REMOVED:
            lines.append(f"-{left_line.text}")
        else:
            lines.append(f" {left_line.text}")

    return "\n".join(lines)


def build_file_analysis_input(versions: FileVersions) -> FileDiff:
    """
    Wrap one changed file as a single-file analysis batch.

    The diff runs from the target branch version to the source branch
    version, i.e. it shows what merging the PR would change.
    """
    unified = build_unified_diff_text(
        versions.target_content,
        versions.source_content,
        versions.path,
    )

    logger.debug(
        "Built file analysis input",
        path=versions.path,
        diff_lines=unified.count("\n") + 1
    )

    return FileDiff(
        path=versions.path,
        change_type=versions.change_type,
        content=f"Diff (target -> source):\n{unified}",
        original_path=versions.path,
    )


async def align_versions(base_text: Optional[str], updated_text: Optional[str]) -> SideBySideDiff:
    """Run build_side_by_side_diff in the threadpool."""
    return await run_in_threadpool(build_side_by_side_diff, base_text, updated_text)


async def prepare_file_analysis_input(versions: FileVersions) -> FileDiff:
    """Run build_file_analysis_input in the threadpool."""
    return await run_in_threadpool(build_file_analysis_input, versions)
