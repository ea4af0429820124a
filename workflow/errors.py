class WorkflowError(Exception):
    """Base class of every business-rule failure raised by the engine."""

    code = "WORKFLOW_ERROR"
    http_status = 400

    def __init__(self, message=None):
        super().__init__(message or self.code)

    def to_dict(self):
        return {"error": self.code, "message": str(self)}


class AuthorizationError(WorkflowError):
    code = "AUTHORIZATION_FAILED"
    http_status = 403


class SelfApprovalError(AuthorizationError):
    code = "SELF_APPROVAL"
    http_status = 403


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    http_status = 404


class DuplicateSignatureError(WorkflowError):
    code = "DUPLICATE_SIGNATURE"
    http_status = 409


class InvalidStateError(WorkflowError):
    code = "INVALID_STATE"
    http_status = 409


class ConcurrentModificationError(InvalidStateError):
    code = "CONCURRENT_MODIFICATION"
    http_status = 409


class ValidationError(WorkflowError):
    code = "VALIDATION_ERROR"
    http_status = 400


class ConfigurationError(WorkflowError):
    # Logged and audited, never surfaced to HTTP callers by the engine
    code = "CONFIGURATION_ERROR"
    http_status = 500
