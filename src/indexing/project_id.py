"""
Project-id normalization shared with the backend.

The backend keys its progress records by the same id, so the output here
must match it exactly:
    "Smith Residence - Phase 2"  ->  "smith_residence_phase_2"
"""

from __future__ import annotations

import re

_SEPARATORS = re.compile(r"[\s\-]+")
_DISALLOWED = re.compile(r"[^a-z0-9_]")
_UNDERSCORES = re.compile(r"_+")


def normalize_project_id(project_name: str) -> str:
    """Lowercase, turn whitespace/dash runs into "_", drop everything outside [a-z0-9_], trim."""
    if project_name is None:
        raise ValueError("project_name is required")
    normalized = str(project_name).lower()
    normalized = _SEPARATORS.sub("_", normalized)
    normalized = _DISALLOWED.sub("", normalized)
    normalized = _UNDERSCORES.sub("_", normalized)
    normalized = normalized.strip("_").strip()
    if not normalized:
        raise ValueError(f"project name {project_name!r} normalizes to an empty id")
    return normalized
