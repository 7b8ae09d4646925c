"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps (campaigns, payments,
refunds, notifications). Nothing in here knows about donations.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Version counter bumped on every update

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, PermissionDeniedError,
      ConflictError, ExternalServiceError, InternalError

API (import from core.exception_handlers):
    - application_exception_handler: DRF handler rendering application errors
"""
