"""
Custom exceptions for better error handling.
"""
from typing import Optional


class PostMeetingError(Exception):
    """Base exception for PostMeeting errors."""
    pass


class ConfigurationError(PostMeetingError):
    """Configuration or environment variable errors."""
    pass


class DatabaseError(PostMeetingError):
    """Database operation errors."""
    pass


class NotFoundError(PostMeetingError):
    """Requested record does not exist."""
    pass


class TokenError(PostMeetingError):
    """Token-related errors."""
    pass


class TokenDecryptionError(TokenError):
    """Failed to decrypt token."""
    pass


class NotConnectedError(TokenError):
    """The account needed for an operation has not been linked."""
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} not connected")


class APIError(PostMeetingError):
    """Base class for API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None, platform: Optional[str] = None):
        self.status_code = status_code
        self.platform = platform
        super().__init__(message)


class TransientAPIError(APIError):
    """Timeout, network error or 5xx; safe to retry."""
    pass


class RateLimitError(TransientAPIError):
    """API rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[int] = None, platform: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429, platform=platform)


class RecallAPIError(APIError):
    """Recall.ai bot API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, platform="recall")


class GoogleAPIError(APIError):
    """Google OAuth/Calendar API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, platform="google")


class LinkedInAPIError(APIError):
    """LinkedIn API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, platform="linkedin")


class FacebookAPIError(APIError):
    """Facebook Graph API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, platform="facebook")


class OpenAIAPIError(APIError):
    """OpenAI API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, platform="openai")
