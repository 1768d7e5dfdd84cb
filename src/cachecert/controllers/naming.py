# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/naming.py

from __future__ import annotations

from typing import Optional, Sequence

from cachecert.api.constants import UPSTREAM_NAME_PREFIX

# max length of a kubernetes object name
MAX_NAME_LENGTH = 253

# chars kept ahead of the hash suffix once a name is too long
HASH_PREFIX_LENGTH = 128

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def gen_hash(s: str) -> str:
    """64-bit FNV-1a of ``s`` as an unsigned decimal string."""
    h = _FNV64_OFFSET
    for b in s.encode("utf-8"):
        h ^= b
        h = (h * _FNV64_PRIME) & _UINT64_MASK
    return str(h)


def upstream_certificate_name(*dns_names: str) -> str:
    """
    Deterministic upstream Certificate name for a set of DNS names.

    Only the set matters, not the order: the names are sorted on a copy
    before being joined. Names that would exceed the kubernetes limit are
    truncated and suffixed with a hash of the full joined string.
    """
    # the CRD requires at least one dnsName, so this only guards direct callers
    if not dns_names:
        return ""

    names = sorted(dns_names)

    resource_name = "-".join(names).replace("*", "x")

    if len(resource_name) + len(UPSTREAM_NAME_PREFIX) > MAX_NAME_LENGTH:
        keep = HASH_PREFIX_LENGTH - len(UPSTREAM_NAME_PREFIX)
        resource_name = resource_name[:keep] + gen_hash(resource_name)
    resource_name = resource_name.replace("\\", "x")

    return UPSTREAM_NAME_PREFIX + resource_name


def dns_names_equal(x: Optional[Sequence[str]], y: Optional[Sequence[str]]) -> bool:
    """
    Compare two DNS name lists ignoring order.

    ``None`` and an empty list are equal. Duplicates are significant.
    """
    x = x or ()
    y = y or ()

    if len(x) != len(y):
        return False

    if len(x) == 1:
        return x[0] == y[0]

    return sorted(x) == sorted(y)
