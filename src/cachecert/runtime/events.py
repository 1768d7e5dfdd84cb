# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/runtime/events.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

Key = Tuple[str, str]


class ChangeKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    GENERIC = "generic"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    obj: Dict[str, Any]
    # previous version, only set for UPDATE
    old: Optional[Dict[str, Any]] = None

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.obj.get("metadata") or {}

    @property
    def key(self) -> Key:
        return object_key(self.obj)


Predicate = Callable[[ChangeEvent], bool]


def object_key(obj: Dict[str, Any]) -> Key:
    meta = obj.get("metadata") or {}
    return meta.get("namespace", ""), meta.get("name", "")


def resource_version(obj: Optional[Dict[str, Any]]) -> Optional[str]:
    if obj is None:
        return None
    return (obj.get("metadata") or {}).get("resourceVersion")


def resource_version_changes_only(event: ChangeEvent) -> bool:
    """Pass only updates that moved the resourceVersion; creates, deletes and no-op updates are skipped."""
    if event.kind is not ChangeKind.UPDATE:
        return False
    if event.old is None:
        return False
    return resource_version(event.obj) != resource_version(event.old)


def all_of(*predicates: Predicate) -> Predicate:
    def _all(event: ChangeEvent) -> bool:
        return all(p(event) for p in predicates)

    return _all
