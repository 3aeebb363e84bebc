# organization/errors.py
"""
Typed errors for the tenant hierarchy engine.

Every error is a DRF ``APIException`` so a view can let it propagate and
get the right status code without a mapping table:

    NotFound             404  tenant/user absent
    Conflict             409  deletion blocked by children/users
    Forbidden            403  role or scope violation
    ValidationError      400  duplicate name, unknown permission key,
                              malformed parent reference
    CycleDetected        500  corrupted hierarchy
    InternalError        500  storage failure

Read-path scope resolution never raises NotFound/ValidationError; it fails
closed with an empty result instead. CycleDetected is always raised.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class OrganizationError(APIException):
    """Base class for all hierarchy engine errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Organization error."
    default_code = "organization_error"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code)
        self.message = str(self.detail)

    def __str__(self):
        return self.message


class NotFound(OrganizationError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class Conflict(OrganizationError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The operation conflicts with existing records."
    default_code = "conflict"


class Forbidden(OrganizationError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You do not have permission to perform this action."
    default_code = "forbidden"

    def __init__(self, detail=None, code=None, reason=None):
        super().__init__(detail=detail, code=code)
        self.reason = reason


class ParentNotAccessible(Forbidden):
    default_detail = "The parent tenant is outside your accessible scope."
    default_code = "parent_not_accessible"


class ValidationError(OrganizationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "invalid"


class DuplicateName(ValidationError):
    default_detail = "That name is already in use."
    default_code = "duplicate_name"


class UnknownPermissionKey(ValidationError):
    default_detail = "Unknown permission key."
    default_code = "unknown_permission_key"

    def __init__(self, keys, detail=None):
        self.keys = sorted(keys)
        if detail is None:
            detail = f"Unknown permission key(s): {', '.join(self.keys)}"
        super().__init__(detail=detail)


class BrokenChain(ValidationError):
    default_detail = "A parent reference points at a tenant that does not exist."
    default_code = "broken_chain"

    def __init__(self, tenant_id, missing_parent_id):
        self.tenant_id = tenant_id
        self.missing_parent_id = missing_parent_id
        super().__init__(
            detail=(
                f"Tenant {tenant_id} references missing parent "
                f"{missing_parent_id}."
            )
        )


class CycleDetected(OrganizationError):
    default_detail = "The tenant hierarchy contains a cycle."
    default_code = "cycle_detected"

    def __init__(self, tenant_id, detail=None):
        self.tenant_id = tenant_id
        if detail is None:
            detail = f"Cycle detected in tenant hierarchy at tenant {tenant_id}."
        super().__init__(detail=detail)


class InternalError(OrganizationError):
    default_detail = "A storage error occurred."
    default_code = "internal_error"
