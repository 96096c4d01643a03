"""Strava client components (rate limiter, session, pagination, activities)."""

from .activities import ActivitiesAPI  # noqa: F401
from .pagination import fetch_page  # noqa: F401
from .rate_limiter import RateLimiter  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
