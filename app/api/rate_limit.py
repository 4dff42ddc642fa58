"""
Rate limiter shared by the application and its routers.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings


limiter = Limiter(key_func=get_remote_address)

# Limit for interaction endpoints, which clients call on every click
INTERACTION_LIMIT = f"{settings.rate_limit_requests}/minute"
