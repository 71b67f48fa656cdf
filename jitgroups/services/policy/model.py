from __future__ import annotations

from datetime import datetime
from enum import Enum
from functools import partial
import logging
import re
from typing import Callable, Iterable, Mapping, Sequence

from jitgroups.core.config import get_settings
from jitgroups.core.errors import UnsupportedOperationError
from jitgroups.core.lazy import Lazy
from jitgroups.domain.permissions import PolicyPermission
from jitgroups.domain.principals import JitGroupId, Subject
from jitgroups.services.policy.acl import AccessControlList
from jitgroups.services.policy.analysis import PolicyAnalysis
from jitgroups.services.policy.constraints import Constraint, ConstraintClass
from jitgroups.services.policy.privileges import Privilege


logger = logging.getLogger(__name__)

_CONTAINER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-]{1,16}$")
_GROUP_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+$")


class PolicySource(Enum):
    DOCUMENT = "document"
    LEGACY = "legacy"


class PolicyNode:
    """Common state of environments, systems and groups.

    Names are stored lower-case; ``display_name`` keeps the original casing.
    A node without its own ACL defers to the nearest ancestor that has one.
    """

    kind = "policy"

    def __init__(
        self,
        name: str,
        description: str = "",
        access_control_list: AccessControlList | None = None,
        constraints: Mapping[ConstraintClass, Sequence[Constraint]] | None = None,
        *,
        source: PolicySource = PolicySource.DOCUMENT,
    ) -> None:
        self._validate_name(name, source)
        self.name = name.lower()
        self.display_name = name
        self.description = description
        self.access_control_list = access_control_list
        self.source = source
        self._constraints = {cls: tuple((constraints or {}).get(cls, ())) for cls in ConstraintClass}
        self._parent: PolicyNode | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def _validate_name(self, name: str, source: PolicySource) -> None:
        if not name or not _CONTAINER_NAME_PATTERN.match(name):
            raise ValueError(
                f"The {self.kind} name '{name}' is invalid, it must contain only letters, "
                "numbers, and hyphens and must not exceed 16 characters"
            )

    @property
    def parent(self) -> PolicyNode | None:
        return self._parent

    def _set_parent(self, parent: PolicyNode) -> None:
        if self._parent is not None:
            raise ValueError(f"The {self.kind} '{self.name}' already has a parent")
        self._parent = parent

    def ancestry(self) -> list[PolicyNode]:
        # This node first, then each parent up to the root.
        nodes: list[PolicyNode] = []
        node: PolicyNode | None = self
        while node is not None:
            nodes.append(node)
            node = node.parent
        return nodes

    def constraints(self, constraint_class: ConstraintClass) -> tuple[Constraint, ...]:
        return self._constraints[constraint_class]

    def effective_constraints(self, constraint_class: ConstraintClass) -> list[Constraint]:
        # Constraints are merged by name; the one closest to this node wins.
        merged: dict[str, Constraint] = {}
        for node in self.ancestry():
            for constraint in node.constraints(constraint_class):
                merged.setdefault(constraint.name, constraint)
        return list(merged.values())

    def effective_access_control_list(self) -> AccessControlList:
        for node in self.ancestry():
            if node.access_control_list is not None:
                return node.access_control_list
        return AccessControlList()

    def is_access_allowed(
        self,
        subject: Subject,
        permissions: PolicyPermission | Iterable[PolicyPermission] | int,
        now: datetime | None = None,
    ) -> bool:
        return self.effective_access_control_list().is_allowed(subject, permissions, now)


class JitGroupPolicy(PolicyNode):
    """A group that subjects can join for a limited time."""

    kind = "group"

    def __init__(
        self,
        name: str,
        description: str = "",
        access_control_list: AccessControlList | None = None,
        constraints: Mapping[ConstraintClass, Sequence[Constraint]] | None = None,
        privileges: Iterable[Privilege] = (),
        *,
        source: PolicySource = PolicySource.DOCUMENT,
    ) -> None:
        super().__init__(name, description, access_control_list, constraints, source=source)
        self.privileges: tuple[Privilege, ...] = tuple(privileges)

    def _validate_name(self, name: str, source: PolicySource) -> None:
        settings = get_settings()
        max_length = (
            settings.legacy_group_name_max_length if source is PolicySource.LEGACY else settings.group_name_max_length
        )
        if not name or not _GROUP_NAME_PATTERN.match(name) or len(name) > max_length:
            raise ValueError(
                f"The group name '{name}' is invalid, it must contain only letters, "
                f"numbers, and hyphens and must not exceed {max_length} characters"
            )

    @property
    def system(self) -> SystemPolicy:
        if not isinstance(self.parent, SystemPolicy):
            raise ValueError(f"The group '{self.name}' has not been added to a system")
        return self.parent

    @property
    def id(self) -> JitGroupId:
        system = self.system
        return JitGroupId(system.environment.name, system.name, self.name)

    def analyze(
        self,
        subject: Subject,
        permissions: PolicyPermission | Iterable[PolicyPermission] | int,
        now: datetime | None = None,
    ) -> PolicyAnalysis:
        return PolicyAnalysis(self, subject, permissions, now)


GroupLoader = Callable[["SystemPolicy"], Iterable[JitGroupPolicy]]


class SystemPolicy(PolicyNode):
    """A system groups related JIT groups.

    A system built with a ``group_loader`` gets its groups from that loader,
    once, on first access; such a system rejects ``add``.
    """

    kind = "system"

    def __init__(
        self,
        name: str,
        description: str = "",
        access_control_list: AccessControlList | None = None,
        constraints: Mapping[ConstraintClass, Sequence[Constraint]] | None = None,
        *,
        source: PolicySource = PolicySource.DOCUMENT,
        group_loader: GroupLoader | None = None,
    ) -> None:
        super().__init__(name, description, access_control_list, constraints, source=source)
        self._groups: dict[str, JitGroupPolicy] = {}
        self._loaded: Lazy[dict[str, JitGroupPolicy]] | None = (
            Lazy(partial(self._load_groups, group_loader)) if group_loader is not None else None
        )

    @property
    def environment(self) -> EnvironmentPolicy:
        if not isinstance(self.parent, EnvironmentPolicy):
            raise ValueError(f"The system '{self.name}' has not been added to an environment")
        return self.parent

    @property
    def is_lazy(self) -> bool:
        return self._loaded is not None

    def _load_groups(self, group_loader: GroupLoader) -> dict[str, JitGroupPolicy]:
        groups: dict[str, JitGroupPolicy] = {}
        for group in group_loader(self):
            _add_child(self, groups, group)
        logger.debug("system_groups_loaded system=%s groups=%s", self.name, len(groups))
        return groups

    def _children(self) -> dict[str, JitGroupPolicy]:
        if self._loaded is not None:
            return self._loaded.get()
        return self._groups

    def add(self, group: JitGroupPolicy) -> SystemPolicy:
        if self._loaded is not None:
            raise UnsupportedOperationError(f"Groups cannot be added to the system '{self.name}'")
        _add_child(self, self._groups, group)
        return self

    def groups(self) -> list[JitGroupPolicy]:
        return list(self._children().values())

    def group(self, name: str) -> JitGroupPolicy | None:
        return self._children().get(name.lower())


class EnvironmentPolicy(PolicyNode):
    """Root of a policy tree."""

    kind = "environment"

    def __init__(
        self,
        name: str,
        description: str = "",
        access_control_list: AccessControlList | None = None,
        constraints: Mapping[ConstraintClass, Sequence[Constraint]] | None = None,
        *,
        source: PolicySource = PolicySource.DOCUMENT,
    ) -> None:
        super().__init__(name, description, access_control_list, constraints, source=source)
        self._systems: dict[str, SystemPolicy] = {}

    def add(self, system: SystemPolicy) -> EnvironmentPolicy:
        _add_child(self, self._systems, system)
        return self

    def systems(self) -> list[SystemPolicy]:
        return list(self._systems.values())

    def system(self, name: str) -> SystemPolicy | None:
        return self._systems.get(name.lower())


def _add_child(parent: PolicyNode, children: dict, child: PolicyNode) -> None:
    if child.name in children:
        raise ValueError(f"A {child.kind} with the same name has already been added")
    child._set_parent(parent)
    children[child.name] = child
