from typing import Any, Dict, Optional


class AppError(Exception):
    status_code = 500
    default_detail = "internal_error"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        self.detail = str(detail or self.default_detail)
        if status_code is not None:
            self.status_code = int(status_code)
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class AuthError(AppError):
    status_code = 401
    default_detail = "Not authenticated"


class ValidationError(AppError):
    status_code = 400
    default_detail = "Invalid request"

    def __init__(self, detail: Optional[str] = None, field: Optional[str] = None):
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class NotFoundError(AppError):
    """Record is absent or belongs to another user; the two are not distinguished."""

    status_code = 404
    default_detail = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_detail = "Conflict"


class NoMaterialError(AppError):
    status_code = 400
    default_detail = "No mistakes available to build a practice sheet"


class UpstreamConfigError(AppError):
    status_code = 500
    default_detail = "AI service is not configured"


class UpstreamCallError(AppError):
    status_code = 500
    default_detail = "Upstream call failed"


class ParseError(UpstreamCallError):
    default_detail = "Model reply could not be parsed"

    def __init__(self, detail: Optional[str] = None, raw_text: str = ""):
        super().__init__(detail)
        self.raw_text = raw_text
