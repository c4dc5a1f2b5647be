"""
Rate limiting configuration for API calls.
"""
from aiolimiter import AsyncLimiter

from postmeeting.config import settings


class RateLimiters:
    """Centralized rate limiters for different APIs."""

    def __init__(self):
        """Initialize rate limiters for different services."""
        self.recall_limiter = AsyncLimiter(max_rate=settings.recall_rate_limit, time_period=60)
        self.google_limiter = AsyncLimiter(max_rate=settings.google_rate_limit, time_period=60)

        # LinkedIn and Facebook throttle per member/app; stay conservative
        self.linkedin_limiter = AsyncLimiter(max_rate=settings.social_rate_limit, time_period=60)
        self.facebook_limiter = AsyncLimiter(max_rate=settings.social_rate_limit, time_period=60)

        self.openai_limiter = AsyncLimiter(max_rate=settings.openai_rate_limit, time_period=60)

    async def acquire_recall_limit(self):
        """Acquire rate limit slot for the Recall.ai API."""
        async with self.recall_limiter:
            pass

    async def acquire_google_limit(self):
        """Acquire rate limit slot for Google APIs."""
        async with self.google_limiter:
            pass

    async def acquire_linkedin_limit(self):
        """Acquire rate limit slot for the LinkedIn API."""
        async with self.linkedin_limiter:
            pass

    async def acquire_facebook_limit(self):
        """Acquire rate limit slot for the Facebook Graph API."""
        async with self.facebook_limiter:
            pass

    async def acquire_openai_limit(self):
        """Acquire rate limit slot for OpenAI API."""
        async with self.openai_limiter:
            pass


# Global rate limiters instance
rate_limiters = RateLimiters()
