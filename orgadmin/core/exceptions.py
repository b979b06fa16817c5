"""
Exception hierarchy for administrator management.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. The calling layer turns each
one into a specific, actionable message.

Usage:
    from orgadmin.core.exceptions import NotFoundError, CycleError

    raise NotFoundError(resource="Administrator", resource_id="a1b2")
    raise CycleError(child_id, proposed_parent_id)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant lookups, so a
    caller cannot test for the existence of another company's records.

    Args:
        resource: Human-readable model/entity name (e.g. "Administrator").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        company_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        company_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.company_id = company_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if company_id is not None:
            msg += f" (company={company_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Covers malformed permission bundles (non-boolean leaf, unknown or missing
    category), bad contact fields and level-order violations.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when the decision engine denies an action.

    Maps to HTTP 403. ``reason`` is the engine's human-readable explanation.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class SelfActionError(AuthorizationError):
    """Raised when an administrator attempts a disallowed change to their own account."""


class PrivilegeEscalationError(AuthorizationError):
    """Raised when an actor tries to hand out more than it holds.

    Either a level above its own (``requested_level``) or permission flags
    its own resolved bundle does not grant (``permissions``, dotted keys).
    """

    def __init__(
        self,
        actor_level: str,
        requested_level: str | None = None,
        permissions=None,
    ) -> None:
        self.actor_level = actor_level
        self.requested_level = requested_level
        self.permissions = sorted(permissions or ())
        if self.permissions:
            msg = (
                f"A {actor_level} cannot grant permissions it does not hold: "
                + ", ".join(self.permissions)
            )
        else:
            msg = f"A {actor_level} cannot assign the {requested_level} level"
        super().__init__(msg)


class CycleError(Exception):
    """Raised when a parent assignment would make the hierarchy cyclic.

    Always rejected, never silently corrected. Maps to HTTP 409.
    """

    def __init__(self, child_id: str, parent_id: str) -> None:
        self.child_id = child_id
        self.parent_id = parent_id
        if child_id == parent_id:
            msg = f"Administrator {child_id} cannot report to itself"
        else:
            msg = (
                f"Cannot set parent of {child_id} to {parent_id}: "
                "would create circular reference"
            )
        super().__init__(msg)
