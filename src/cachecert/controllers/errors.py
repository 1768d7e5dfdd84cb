# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/controllers/errors.py
class CacheCertError(RuntimeError):
    """Base class for operator failures."""

class NotFoundError(CacheCertError):
    """Raised when a requested object does not exist."""

class StoreError(CacheCertError):
    """Raised for any other failure talking to the API server."""

class AlreadyExistsError(StoreError):
    """Raised when creating an object whose name is already taken."""

class ConflictError(StoreError):
    """Raised when a write was made against a stale resourceVersion."""

class WatchExpiredError(StoreError):
    """Raised when a watch resumes from a resourceVersion the server no longer has."""

class DeadlineExceededError(CacheCertError):
    """Raised when a reconcile pass runs past its deadline."""

class UpstreamSecretPendingError(CacheCertError):
    """Raised while cert-manager has not produced the upstream secret yet."""

class OwnershipConflictError(CacheCertError):
    """Raised when the target secret exists but was not created by the operator."""

class SchemaError(CacheCertError):
    """Raised when an upstream Certificate is missing or has malformed fields."""

class FieldNotFoundError(SchemaError):
    """Raised when a field is absent from an upstream Certificate."""

class FieldTypeError(SchemaError):
    """Raised when a field on an upstream Certificate has the wrong type."""

class InvalidSecretError(CacheCertError):
    """Raised when a secret lacks the key material required for a sync."""

class MissingInputError(CacheCertError):
    """Raised when secret generation is called without one of its inputs."""
