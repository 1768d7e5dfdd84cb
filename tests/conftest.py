# tests/conftest.py
from __future__ import annotations

import copy
import itertools
import threading
import time
import uuid

import pytest

from cachecert.api.constants import (
    CACHED_CERTIFICATES,
    CERTIFICATE_NAME_ANNOTATION_KEY,
    CERTIFICATES,
    SECRETS,
)
from cachecert.controllers.errors import AlreadyExistsError, ConflictError, NotFoundError


class FakeStore:
    """
    In-memory stand-in for the API server.

    Good enough for the operator: resourceVersions with optimistic
    concurrency, a status subresource on CachedCertificates, cascade delete
    through ownerReferences, watches replayed from an event log, and
    injectable failures (``store.faults[(op, kind, name)] = exc``).
    """

    def __init__(self):
        self._cond = threading.Condition(threading.RLock())
        self._objects = {}
        self._rv = itertools.count(1)
        self._last_rv = 0
        self._log = []
        self._closed = False
        self.calls = []
        self.faults = {}

    # ------------------------
    # helpers
    # ------------------------

    @staticmethod
    def _id(kind, namespace, name):
        return (kind.plural, namespace, name)

    def _next_rv(self):
        self._last_rv = next(self._rv)
        return str(self._last_rv)

    def _record(self, op, kind, namespace, name):
        self.calls.append((op, kind.kind, namespace, name))
        fault = self.faults.get((op, kind.kind, name))
        if fault is not None:
            raise fault

    def _emit(self, event_type, kind, obj):
        self._log.append((int(obj["metadata"]["resourceVersion"]), event_type, kind.plural, copy.deepcopy(obj)))
        self._cond.notify_all()

    def _existing(self, kind, namespace, name):
        obj = self._objects.get(self._id(kind, namespace, name))
        if obj is None:
            raise NotFoundError(f"{kind.kind} {namespace}/{name} not found")
        return obj

    @staticmethod
    def _check_rv(existing, obj):
        rv = (obj.get("metadata") or {}).get("resourceVersion")
        if rv and rv != existing["metadata"]["resourceVersion"]:
            raise ConflictError(f"stale resourceVersion {rv}")

    # ------------------------
    # Store protocol
    # ------------------------

    def get(self, kind, namespace, name, *, timeout=None):
        with self._cond:
            self._record("get", kind, namespace, name)
            return copy.deepcopy(self._existing(kind, namespace, name))

    def list(self, kind, namespace=None, *, timeout=None):
        with self._cond:
            items = [
                copy.deepcopy(o)
                for (plural, ns, _), o in sorted(self._objects.items())
                if plural == kind.plural and (namespace is None or ns == namespace)
            ]
            return items, str(self._last_rv)

    def create(self, kind, obj, *, timeout=None):
        with self._cond:
            meta = obj["metadata"]
            self._record("create", kind, meta["namespace"], meta["name"])
            oid = self._id(kind, meta["namespace"], meta["name"])
            if oid in self._objects:
                raise AlreadyExistsError(f"{kind.kind} {meta['namespace']}/{meta['name']} already exists")
            stored = copy.deepcopy(obj)
            stored.setdefault("apiVersion", kind.api_version)
            stored.setdefault("kind", kind.kind)
            stored["metadata"]["uid"] = str(uuid.uuid4())
            stored["metadata"]["resourceVersion"] = self._next_rv()
            if kind == CACHED_CERTIFICATES:
                stored.pop("status", None)
            self._objects[oid] = stored
            self._emit("ADDED", kind, stored)
            return copy.deepcopy(stored)

    def replace(self, kind, obj, *, timeout=None):
        with self._cond:
            meta = obj["metadata"]
            self._record("replace", kind, meta["namespace"], meta["name"])
            existing = self._existing(kind, meta["namespace"], meta["name"])
            self._check_rv(existing, obj)
            stored = copy.deepcopy(obj)
            stored.setdefault("apiVersion", kind.api_version)
            stored.setdefault("kind", kind.kind)
            stored["metadata"]["uid"] = existing["metadata"]["uid"]
            stored["metadata"]["resourceVersion"] = existing["metadata"]["resourceVersion"]
            if kind == CACHED_CERTIFICATES:
                stored["status"] = copy.deepcopy(existing.get("status"))
            if stored == existing:
                # the API server neither bumps the version nor notifies watchers on a no-op update
                return copy.deepcopy(existing)
            stored["metadata"]["resourceVersion"] = self._next_rv()
            self._objects[self._id(kind, meta["namespace"], meta["name"])] = stored
            self._emit("MODIFIED", kind, stored)
            return copy.deepcopy(stored)

    def replace_status(self, kind, obj, *, timeout=None):
        with self._cond:
            meta = obj["metadata"]
            self._record("replace_status", kind, meta["namespace"], meta["name"])
            existing = self._existing(kind, meta["namespace"], meta["name"])
            self._check_rv(existing, obj)
            if obj.get("status") == existing.get("status"):
                return copy.deepcopy(existing)
            existing["status"] = copy.deepcopy(obj.get("status"))
            existing["metadata"]["resourceVersion"] = self._next_rv()
            self._emit("MODIFIED", kind, existing)
            return copy.deepcopy(existing)

    def patch_status(self, kind, namespace, name, status, *, timeout=None):
        with self._cond:
            self._record("patch_status", kind, namespace, name)
            existing = self._existing(kind, namespace, name)
            merged = dict(existing.get("status") or {})
            merged.update(status)
            if merged == existing.get("status"):
                return copy.deepcopy(existing)
            existing["status"] = merged
            existing["metadata"]["resourceVersion"] = self._next_rv()
            self._emit("MODIFIED", kind, existing)
            return copy.deepcopy(existing)

    def watch(self, kind, namespace=None, *, resource_version=None, timeout_seconds=None, stop=None):
        start = int(resource_version or 0)
        end = time.monotonic() + (timeout_seconds or 300)
        pos = 0
        while time.monotonic() < end:
            with self._cond:
                if self._closed or (stop is not None and stop.is_set()):
                    return
                batch = self._log[pos:]
                pos = len(self._log)
                if not batch:
                    self._cond.wait(0.05)
                    continue
            for rv, event_type, plural, obj in batch:
                if plural != kind.plural or rv <= start:
                    continue
                if namespace is not None and obj["metadata"].get("namespace") != namespace:
                    continue
                yield event_type, copy.deepcopy(obj)

    # ------------------------
    # test-only operations
    # ------------------------

    def delete(self, kind, namespace, name):
        with self._cond:
            obj = self._objects.pop(self._id(kind, namespace, name))
            obj["metadata"]["resourceVersion"] = self._next_rv()
            self._emit("DELETED", kind, obj)
            uid = obj["metadata"]["uid"]
            owned = [
                oid for oid, o in self._objects.items()
                if any(ref.get("uid") == uid for ref in o["metadata"].get("ownerReferences") or [])
            ]
        for plural, ns, n in owned:
            owned_kind = next(k for k in _KINDS if k.plural == plural)
            self.delete(owned_kind, ns, n)

    def peek(self, kind, namespace, name):
        with self._cond:
            obj = self._objects.get(self._id(kind, namespace, name))
            return copy.deepcopy(obj) if obj is not None else None

    def history(self, kind, namespace, name):
        """Every version of an object ever emitted to watchers, oldest first."""
        with self._cond:
            return [
                copy.deepcopy(obj)
                for _, _, plural, obj in self._log
                if plural == kind.plural and obj["metadata"].get("namespace") == namespace and obj["metadata"]["name"] == name
            ]

    def writes(self, op=None):
        return [c for c in self.calls if c[0] != "get" and (op is None or c[0] == op)]

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()


_KINDS = (CACHED_CERTIFICATES, CERTIFICATES, SECRETS)


def _eventually(fn, timeout=10.0, interval=0.05):
    """Poll fn until it returns a truthy value, like Gomega's Eventually."""
    end = time.monotonic() + timeout
    last_exc = None
    while time.monotonic() < end:
        try:
            value = fn()
            if value:
                return value
        except Exception as exc:  # retried until the timeout
            last_exc = exc
        time.sleep(interval)
    raise AssertionError(f"condition not met within {timeout}s (last error: {last_exc!r})")


@pytest.fixture
def store():
    s = FakeStore()
    yield s
    s.close()


@pytest.fixture
def eventually():
    return _eventually


@pytest.fixture
def make_cert():
    def _make(name="my-cert", namespace="testing", dns_names=("example.com",), secret_name=None, status=None):
        spec = {
            "issuerRef": {"name": "my-issuer", "kind": "Issuer"},
            "dnsNames": list(dns_names),
        }
        if secret_name:
            spec["secretName"] = secret_name
        obj = {
            "apiVersion": CACHED_CERTIFICATES.api_version,
            "kind": CACHED_CERTIFICATES.kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }
        if status is not None:
            obj["status"] = status
        return obj

    return _make


@pytest.fixture
def make_upstream_secret():
    def _make(name, namespace="cert-cache", data=None, labels=None, annotate=True, secret_type="kubernetes.io/tls"):
        annotations = {CERTIFICATE_NAME_ANNOTATION_KEY: name} if annotate else {}
        obj = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "annotations": annotations,
            },
            "type": secret_type,
            "data": {"tls.crt": "", "tls.key": ""} if data is None else data,
        }
        if labels:
            obj["metadata"]["labels"] = labels
        return obj

    return _make
