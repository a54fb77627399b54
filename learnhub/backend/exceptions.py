"""
LearnHub Learning Management System
Custom exception classes for structured error handling
"""

from typing import Optional, Dict, Any
from fastapi import status


class AppException(Exception):
    """Base application exception with structured error information"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }


# Authentication Exceptions
class AuthenticationException(AppException):
    """Raised when authentication fails"""

    def __init__(
        self,
        message: str = "Authentication required",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTHENTICATION_FAILED",
            details=details
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when login credentials are invalid"""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(
            message=message,
            details={"field": "credentials"}
        )


class TokenExpiredException(AuthenticationException):
    """Raised when JWT token has expired"""

    def __init__(self, message: str = "Access token has expired"):
        super().__init__(
            message=message,
            details={"action": "login_required"}
        )


class TokenInvalidException(AuthenticationException):
    """Raised when JWT token is invalid"""

    def __init__(self, message: str = "Invalid access token"):
        super().__init__(
            message=message,
            details={"action": "login_required"}
        )


# Authorization Exceptions
class AuthorizationException(AppException):
    """Raised when user lacks permission for an action"""

    def __init__(
        self,
        message: str = "Access denied",
        required_roles: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if required_roles:
            details["required_roles"] = required_roles

        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
            details=details
        )


class ResourceOwnershipException(AuthorizationException):
    """Raised when user doesn't own the requested resource"""

    def __init__(self, resource_type: str, resource_id: str, action: str = "access"):
        super().__init__(
            message=f"Not authorized to {action} this {resource_type}",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id
            }
        )


# Validation Exceptions
class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if field:
            details["field"] = field
        if value is not None:
            details["provided_value"] = str(value)

        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=details
        )


# Resource Exceptions
class NotFoundException(AppException):
    """Raised when requested resource is not found"""

    def __init__(
        self,
        message: str = "Resource not found",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None
    ):
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details=details
        )


class ResourceNotFoundByIdException(NotFoundException):
    """Raised when resource with specific ID is not found"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            message=f"{resource_type.replace('_', ' ').capitalize()} not found",
            resource_type=resource_type,
            resource_id=resource_id
        )


class CourseNotFoundException(ResourceNotFoundByIdException):
    def __init__(self, course_id: str):
        super().__init__("course", course_id)


class AssignmentNotFoundException(ResourceNotFoundByIdException):
    def __init__(self, assignment_id: str):
        super().__init__("assignment", assignment_id)


# Conflict Exceptions
class ConflictException(AppException):
    """Raised when a request collides with existing state"""

    def __init__(
        self,
        message: str = "Resource conflict",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="CONFLICT",
            details=details
        )


class DuplicateResourceException(ConflictException):
    """Raised when attempting to create a duplicate resource"""

    def __init__(self, resource_type: str, field: str, value: str):
        super().__init__(
            message=f"{resource_type.capitalize()} with this {field} already exists",
            details={
                "resource_type": resource_type,
                "field": field,
                "value": value
            }
        )


class AlreadyEnrolledException(ConflictException):
    """Raised when a learner enrolls in a course twice"""

    def __init__(self, course_id: str):
        super().__init__(
            message="Already enrolled in this course",
            details={"course_id": course_id}
        )


# Business Logic Exceptions
class BusinessLogicException(AppException):
    """Raised when a business rule is violated"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if rule:
            details["business_rule"] = rule

        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BUSINESS_LOGIC_ERROR",
            details=details
        )


class MaxAttemptsExceededException(BusinessLogicException):
    """Raised when submission attempts are exhausted"""

    def __init__(self, assignment_id: str, max_attempts: int, current_attempts: int):
        super().__init__(
            message="Maximum attempts exceeded",
            rule="max_attempts",
            details={
                "assignment_id": assignment_id,
                "max_attempts": max_attempts,
                "current_attempts": current_attempts
            }
        )


class CourseNotCompletedException(NotFoundException):
    """Raised when a certificate is requested for an unfinished course"""

    def __init__(self, course_id: str):
        super().__init__(
            message="Course not completed or not found",
            resource_type="learning_progress",
            resource_id=course_id
        )


class CertificateAlreadyIssuedException(BusinessLogicException):
    """Raised when a certificate already exists for an enrollment"""

    def __init__(self, certificate_id: Optional[str]):
        super().__init__(
            message="Certificate already issued for this course",
            rule="single_certificate",
            details={"certificate_id": certificate_id}
        )




__all__ = [
    # Base
    "AppException",

    # Authentication
    "AuthenticationException",
    "InvalidCredentialsException",
    "TokenExpiredException",
    "TokenInvalidException",

    # Authorization
    "AuthorizationException",
    "ResourceOwnershipException",

    # Validation
    "ValidationException",

    # Resources
    "NotFoundException",
    "ResourceNotFoundByIdException",
    "CourseNotFoundException",
    "AssignmentNotFoundException",

    # Conflicts
    "ConflictException",
    "DuplicateResourceException",
    "AlreadyEnrolledException",

    # Business Logic
    "BusinessLogicException",
    "MaxAttemptsExceededException",
    "CourseNotCompletedException",
    "CertificateAlreadyIssuedException",
]
