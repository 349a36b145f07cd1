"""
Custom Exceptions
Application-specific exception classes
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AppException(Exception):
    """Base application exception"""

    # Message shown to API callers for server-side failures
    public_message = "An internal error occurred"

    def __init__(
        self,
        message: str,
        code: str = "app_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class ValidationException(AppException):
    """Validation error exception"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="validation_error",
            status_code=400,
            details=details,
        )


class AuthenticationException(AppException):
    """Authentication error exception"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="authentication_error",
            status_code=401,
            details=details,
        )


class AuthorizationException(AppException):
    """Authorization error exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="authorization_error",
            status_code=403,
            details=details,
        )


class CycleDetectedException(AppException):
    """Group membership graph revisits a group during expansion"""

    def __init__(
        self,
        group_id: str,
        via_group_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["group_id"] = group_id
        if via_group_id:
            details["via_group_id"] = via_group_id
        super().__init__(
            message=f"Group {group_id} already visited during expansion",
            code="cycle_detected",
            status_code=500,
            details=details,
        )


class UpstreamUnavailableException(AppException):
    """External identity/search/embedding/generation call failed"""

    public_message = "Search temporarily unavailable"

    def __init__(
        self,
        message: str,
        upstream: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if upstream:
            details["upstream"] = upstream
        super().__init__(
            message=message,
            code="upstream_unavailable",
            status_code=503,
            details=details,
        )


class CacheInconsistentException(AppException):
    """ACL cache state cannot be trusted; callers must deny"""

    def __init__(
        self,
        message: str = "ACL cache inconsistent",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="cache_inconsistent",
            status_code=500,
            details=details,
        )


class ConcurrentUpdateException(AppException):
    """Optimistic version check lost against a concurrent ACL write"""

    def __init__(
        self,
        message: str = "Concurrent ACL update",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="concurrent_update",
            status_code=409,
            details=details,
        )


class EmbeddingException(AppException):
    """Embedding generation error exception"""

    public_message = "Search temporarily unavailable"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="embedding_error",
            status_code=503,
            details=details,
        )


class RetrievalException(AppException):
    """Retrieval/search error exception"""

    public_message = "Search temporarily unavailable"

    def __init__(
        self,
        message: str,
        retriever: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if retriever:
            details["retriever"] = retriever
        super().__init__(
            message=message,
            code="retrieval_error",
            status_code=503,
            details=details,
        )


class RAGException(AppException):
    """Answer pipeline error exception"""

    public_message = "Answer generation temporarily unavailable"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if stage:
            details["stage"] = stage
        super().__init__(
            message=message,
            code="rag_error",
            status_code=500,
            details=details,
        )


class LLMException(AppException):
    """LLM generation error exception"""

    public_message = "Answer generation temporarily unavailable"

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if model:
            details["model"] = model
        super().__init__(
            message=message,
            code="llm_error",
            status_code=503,
            details=details,
        )
