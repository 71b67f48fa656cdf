from __future__ import annotations

# Re-export the importer surface for centralized imports.

from jitgroups.services.legacy.bindings import (
    InMemoryBindingSource,
    LegacyBinding,
    LegacyBindingSource,
    LegacyCondition,
    LegacyProject,
)
from jitgroups.services.legacy.importer import LegacyPolicyImporter, merge_groups, parse_eligibility

__all__ = [
    "InMemoryBindingSource",
    "LegacyBinding",
    "LegacyBindingSource",
    "LegacyCondition",
    "LegacyProject",
    "LegacyPolicyImporter",
    "merge_groups",
    "parse_eligibility",
]
