from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return tuple(out)


@dataclass(frozen=True)
class CapabilitySet:
    """What one caller may touch, as resolved for a single request."""

    allowed_apps: Tuple[str, ...] = ()
    # Image repositories without tag/digest, e.g. "registry.example.com/team/app".
    allowed_images: Tuple[str, ...] = ()

    @classmethod
    def build(cls, *, allowed_apps: Iterable[str], allowed_images: Iterable[str]) -> "CapabilitySet":
        return cls(allowed_apps=_unique(allowed_apps), allowed_images=_unique(allowed_images))


class FlatUserInfo(BaseModel):
    """`{"allowed_apps": [...], "allowed_images": [...]}`"""

    allowed_apps: List[str]
    allowed_images: List[str]
    sub: Optional[str] = None

    def to_capabilities(self) -> CapabilitySet:
        return CapabilitySet.build(allowed_apps=self.allowed_apps, allowed_images=self.allowed_images)


class GroupsUserInfo(BaseModel):
    """`{"groups": [...], "allowed_images": [...]}`; group membership names the apps."""

    groups: List[str]
    allowed_images: List[str]
    # Subject is only kept for log lines.
    sub: Optional[str] = None

    def to_capabilities(self) -> CapabilitySet:
        return CapabilitySet.build(allowed_apps=self.groups, allowed_images=self.allowed_images)
