"""Error types the checkout domain adds on top of protean's exceptions.

NotFound, invalid input and not-allowed conditions are raised as
``ObjectNotFoundError``, ``ValidationError`` and ``InvalidOperationError``.
"""

from protean.exceptions import ValidationError


class DuplicateError(ValidationError):
    """A uniqueness rule was violated (e.g. a repeated discount condition)."""
