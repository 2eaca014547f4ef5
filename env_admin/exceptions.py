"""
Error taxonomy shared by every component.

Each error carries a human-readable message plus a machine-checkable code so
callers can tell, for example, a wrong password from an inactive environment.
"""

from typing import Any, Dict, List, Optional


class AdminError(Exception):
    """Base class for all administration errors"""
    
    default_code = "ADMIN_ERROR"
    
    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
    
    def to_dict(self) -> Dict[str, Any]:
        """Render as the JSON error body returned to callers"""
        body = {"success": False, "error": self.message, "errorCode": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(AdminError):
    default_code = "NOT_FOUND"


class ConflictError(AdminError):
    default_code = "CONFLICT"


class ForbiddenError(AdminError):
    default_code = "FORBIDDEN"


class ValidationError(AdminError):
    default_code = "VALIDATION_ERROR"


class StorageIOError(AdminError):
    default_code = "DB_SAVE_ERROR"


class FilesystemError(AdminError):
    """Copy, detection or removal failure; ``failures`` lists (path, reason) pairs"""
    
    default_code = "FILESYSTEM_ERROR"
    
    def __init__(self, message: str, failures: Optional[List[Dict[str, str]]] = None,
                 code: Optional[str] = None):
        super().__init__(message, code=code)
        self.failures = failures or []
        if self.failures:
            self.details = {"failures": self.failures}


class VerificationFailedError(AdminError):
    """External credential check rejected the credentials (or could not run)"""
    
    default_code = "VERIFICATION_FAILED"
    
    def __init__(self, message: str, verification: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={"validacao": verification} if verification else None)
        self.verification = verification


class AuthenticationError(AdminError):
    """Login rejected; ``code`` names the reason"""
    
    default_code = "INVALID_CREDENTIALS"
    
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_INACTIVE = "USER_INACTIVE"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    PROFILE_INACTIVE = "PERFIL_INACTIVE"
    ENVIRONMENT_NOT_FOUND = "AMBIENTE_NOT_FOUND"
    ENVIRONMENT_INACTIVE = "AMBIENTE_INACTIVE"
