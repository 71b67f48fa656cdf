from __future__ import annotations

from dataclasses import dataclass
import zlib


_ROLE_PREFIXES = ("roles/", "organizations/", "projects/")
_PROJECT_PREFIX = "projects/"


@dataclass(frozen=True, order=True)
class IamRole:
    name: str

    def __post_init__(self) -> None:
        if not self.name.startswith(_ROLE_PREFIXES):
            raise ValueError("The IAM role uses an invalid prefix")

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, text: str | None) -> IamRole | None:
        if text is None:
            return None
        text = text.strip()
        for prefix in _ROLE_PREFIXES:
            if text.startswith(prefix) and len(text) > len(prefix):
                return cls(text)
        return None


@dataclass(frozen=True, order=True)
class ProjectId:
    id: str

    def __post_init__(self) -> None:
        if not self.id or "/" in self.id:
            raise ValueError(f"'{self.id}' is not a valid project ID")

    def __str__(self) -> str:
        return self.id

    @property
    def path(self) -> str:
        return f"{_PROJECT_PREFIX}{self.id}"

    @classmethod
    def parse(cls, text: str | None) -> ProjectId | None:
        # Accepts both "projects/<id>" and a bare project ID.
        if text is None:
            return None
        text = text.strip()
        if text.startswith(_PROJECT_PREFIX):
            remainder = text[len(_PROJECT_PREFIX):]
            return cls(remainder) if remainder and "/" not in remainder else None
        if text and "/" not in text and not text[0].isdigit():
            return cls(text)
        return None


@dataclass(frozen=True)
class IamRoleBinding:
    """Privilege granting ``role`` on ``resource``, optionally under a condition."""

    resource: ProjectId
    role: IamRole
    description: str | None = None
    condition: str | None = None

    def __str__(self) -> str:
        return self.description or f"{self.role} on {self.resource}"

    def checksum(self) -> int:
        data = "".join(
            [self.resource.id, self.role.name, self.condition or "", self.description or ""]
        ).encode("utf-8")
        return zlib.crc32(data)


Privilege = IamRoleBinding
