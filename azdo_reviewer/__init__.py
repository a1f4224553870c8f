"""
AI-Assisted Azure DevOps Pull Request Reviewer

A backend service that pulls Azure DevOps pull requests, sends their changes
to an LLM (Gemini or GLM) in batches for review commentary, and exposes the
manual review actions (votes, comment threads, side-by-side diffs).
"""

__version__ = "2.1.0"
__author__ = "PR Genius Team"
