"""Exceptions raised by the template lifecycle engine"""

from typing import Any, Dict, List, Optional


class PromptOpsError(Exception):
    """Base exception for all engine errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class TemplateValidationError(PromptOpsError):
    """Schema, type or constraint violations; carries every collected message"""

    def __init__(self, message: str, errors: List[str], template_id: Optional[str] = None):
        super().__init__(
            message,
            error_code="VALIDATION_ERROR",
            details={"template_id": template_id, "errors": list(errors)},
        )
        self.errors = list(errors)
        self.template_id = template_id


class TemplateCompilationError(PromptOpsError):
    """Template evaluation failed"""

    def __init__(
        self,
        message: str,
        missing_variables: Optional[List[str]] = None,
        template_id: Optional[str] = None,
        version: Optional[str] = None,
    ):
        super().__init__(
            message,
            error_code="COMPILATION_ERROR",
            details={
                "template_id": template_id,
                "version": version,
                "missing_variables": list(missing_variables or []),
            },
        )
        self.missing_variables = list(missing_variables or [])
        self.template_id = template_id
        self.version = version


class VersionConflictError(PromptOpsError):
    """Explicit version already exists for a template"""

    def __init__(self, template_id: str, version: str):
        super().__init__(
            f"Version {version} already exists for template {template_id}",
            error_code="VERSION_CONFLICT",
            details={"template_id": template_id, "version": version},
        )
        self.template_id = template_id
        self.version = version


class TemplateNotFoundError(PromptOpsError):
    """Unknown template or version id"""

    def __init__(self, template_id: str, version: Optional[str] = None):
        message = f"Template not found: {template_id}"
        if version:
            message = f"Template version not found: {template_id}@{version}"
        super().__init__(
            message,
            error_code="NOT_FOUND",
            details={"template_id": template_id, "version": version},
        )
        self.template_id = template_id
        self.version = version


class StorageError(PromptOpsError):
    """Persistence backend failure"""

    def __init__(self, message: str, namespace: Optional[str] = None, key: Optional[str] = None):
        super().__init__(
            message,
            error_code="STORAGE_ERROR",
            details={"namespace": namespace, "key": key},
        )
        self.namespace = namespace
        self.key = key
