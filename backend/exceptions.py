class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

class NotFoundError(AppError):
    """Raised when a resource is not found."""
    def __init__(self, message: str):
        super().__init__(message, status_code=404)

class ValidationError(AppError):
    """Raised when input validation fails."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)

class AuthenticationError(AppError):
    """Raised when authentication fails."""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)

class AuthorizationError(AppError):
    """Raised when user is not authorized to perform an action."""
    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)

##### TOOL EXCEPTIONS #####

class ToolError(AppError):
    """Base exception for tool-related errors."""
    pass

class ToolNotFoundError(NotFoundError):
    """Raised when a tool or plugin is not registered."""
    def __init__(self, tool_id: str):
        super().__init__(f"Tool {tool_id} not found")

class ToolExecutionError(ToolError):
    """Raised when tool execution fails."""
    def __init__(self, message: str, tool_id: str):
        super().__init__(f"Tool {tool_id} execution failed: {message}")

##### STORAGE EXCEPTIONS #####

class StorageError(AppError):
    """Raised when the blob backend fails."""
    pass

class UnsupportedFileError(ValidationError):
    """Raised when an uploaded file has a disallowed type or size."""
    pass

class TemplateNotFoundError(NotFoundError):
    """Raised when a document template does not exist."""
    def __init__(self, template_name: str):
        super().__init__(f"Template {template_name} not found")

##### ORCHESTRATION EXCEPTIONS #####

class OrchestrationError(AppError):
    """Raised when a multi-agent exchange cannot produce a response."""
    def __init__(self, message: str, error_id: str = None):
        super().__init__(message, status_code=500)
        self.error_id = error_id

class AgentSelectionError(OrchestrationError):
    """Raised when the selection strategy names no known participant."""
    def __init__(self, raw_result: str):
        super().__init__(f"Strategy unable to select next agent from result: {raw_result!r}")
        self.raw_result = raw_result
