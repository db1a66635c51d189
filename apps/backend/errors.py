"""Domain exceptions raised by the data-access layer.

Route handlers map them to HTTP responses: ``ValueError`` is a 400,
:class:`AuthenticationError` a 401,
:class:`NotFoundError` a 404 and :class:`ConflictError` a 409.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store-level failures."""


class NotFoundError(StoreError, LookupError):
    """The addressed row does not exist."""


class ConflictError(StoreError):
    """The request conflicts with current state (checked-out cart, row in use, duplicate key)."""


class AuthenticationError(StoreError):
    """Credentials did not match."""
