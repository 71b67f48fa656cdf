from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from pydantic import BaseModel, Field


class LegacyCondition(BaseModel):
    # Mirrors the "condition" object of an IAM policy binding.
    expression: str = ""
    title: str | None = None
    description: str | None = None


class LegacyBinding(BaseModel):
    """IAM role binding as exported by Asset Inventory."""

    role: str = Field(min_length=1)
    members: list[str] = Field(default_factory=list)
    condition: LegacyCondition | None = None

    @property
    def condition_expression(self) -> str | None:
        if self.condition is None or not self.condition.expression.strip():
            return None
        return self.condition.expression


class LegacyProject(BaseModel):
    project_id: str = Field(min_length=1)
    project_number: int = Field(gt=0)


class LegacyBindingSource(Protocol):
    def root_bindings(self) -> list[LegacyBinding]:
        ...

    def projects(self) -> list[LegacyProject]:
        ...

    def project_bindings(self, project: LegacyProject) -> list[LegacyBinding]:
        ...


@dataclass
class InMemoryBindingSource:
    """Binding source backed by an exported document.

    The document has the shape ``{"root_bindings": [...], "projects": [{"project_id": ...,
    "project_number": ..., "bindings": [...]}]}``. Projects without bindings yield an
    empty list.
    """

    root: list[LegacyBinding] = field(default_factory=list)
    bindings_by_project: dict[str, list[LegacyBinding]] = field(default_factory=dict)
    project_list: list[LegacyProject] = field(default_factory=list)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> InMemoryBindingSource:
        source = cls(root=_validate_bindings(document.get("root_bindings") or []))
        for entry in document.get("projects") or []:
            project = LegacyProject.model_validate(entry)
            source.project_list.append(project)
            source.bindings_by_project[project.project_id] = _validate_bindings(entry.get("bindings") or [])
        return source

    def root_bindings(self) -> list[LegacyBinding]:
        return list(self.root)

    def projects(self) -> list[LegacyProject]:
        return list(self.project_list)

    def project_bindings(self, project: LegacyProject) -> list[LegacyBinding]:
        return list(self.bindings_by_project.get(project.project_id, []))


def _validate_bindings(items: Iterable[Any]) -> list[LegacyBinding]:
    return [LegacyBinding.model_validate(item) for item in items]
