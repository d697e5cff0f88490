"""Errors raised by the asset services.

Invariant violations use Django's ``ValidationError`` directly; the classes
below cover the cases a caller must tell apart from a validation problem.
"""

from django.core.exceptions import ObjectDoesNotExist, ValidationError


class ConflictError(Exception):
    """A unique key (asset tag, category or supplier name) is taken."""


class NotFoundError(ObjectDoesNotExist):
    """The operation referenced a row that does not exist."""


class PersistenceError(Exception):
    """The database failed; details are logged, never shown to callers."""


class InUseError(ValidationError):
    """A reference row cannot be deleted while assets still point to it."""
