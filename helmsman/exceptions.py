"""Custom exceptions for Helmsman."""


class HelmsmanError(Exception):
    """Base exception for Helmsman."""

    pass


class ConfigurationError(HelmsmanError):
    """Configuration-related errors."""

    pass


class LLMError(HelmsmanError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestTooLargeError(LLMError):
    """Outbound request exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Request too large ({size} bytes). Maximum {limit} bytes allowed. "
            "Try reducing context or file sizes."
        )
        self.size = size
        self.limit = limit


class RetryExhaustedError(LLMError):
    """All retry attempts for an outbound request failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"All API attempts failed. Last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ToolError(HelmsmanError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' does not exist.")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by policy."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class CompactionError(HelmsmanError):
    """Conversation compaction failed."""

    pass


class SessionError(HelmsmanError):
    """Session-related errors."""

    pass


class SessionLoadError(SessionError):
    """Session file could not be read or validated."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot load session '{path}': {reason}")
        self.path = path
        self.reason = reason
