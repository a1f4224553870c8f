"""
Presentation helpers: human-readable labels and PR creation defaults.
"""

import re
from typing import Optional

VOTE_LABELS = {
    10: "Approved",
    5: "Approved with suggestions",
    0: "No vote",
    -5: "Waiting for author",
    -10: "Rejected",
}

THREAD_STATUS_LABELS = {
    "active": "Active",
    "fixed": "Fixed",
    "wontFix": "Won't Fix",
    "closed": "Closed",
    "byDesign": "By Design",
}

# "12345-short-desc" as the last segment of a branch name
WORK_ITEM_BRANCH_PATTERN = re.compile(r"^(\d+)-(.+)$")

DEFAULT_DESCRIPTION = (
    "## Changes\n"
    "\n"
    "## Checklist\n"
    "- [ ] Code reviewed\n"
    "- [ ] Tests pass\n"
    "- [ ] Documentation updated"
)


def vote_label(vote: int) -> str:
    return VOTE_LABELS.get(vote, "Unknown")


def thread_status_label(status: Optional[str]) -> str:
    if not status:
        return "Unknown"
    return THREAD_STATUS_LABELS.get(status, status)


def strip_ref_name(ref_name: Optional[str]) -> str:
    """refs/heads/feature/x -> feature/x"""
    if not ref_name:
        return ""
    if ref_name.startswith("refs/heads/"):
        return ref_name[len("refs/heads/"):]
    return ref_name


def title_from_branch(branch: str) -> str:
    """
    Suggest a PR title from a branch name.

    feature/12345-add-login becomes "12345: add login"; any other
    branch becomes "PR from {branch}".
    """
    branch = strip_ref_name(branch)
    last_segment = branch.split("/")[-1]
    match = WORK_ITEM_BRANCH_PATTERN.match(last_segment)
    if match:
        return f"{match.group(1)}: {match.group(2).replace('-', ' ')}"
    return f"PR from {branch}"


def default_description() -> str:
    return DEFAULT_DESCRIPTION
