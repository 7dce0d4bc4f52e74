# app/core/rate_limit.py
from slowapi import Limiter
from slowapi.util import get_remote_address

# In-memory storage; endpoints opt in with @limiter.limit(...) and a `request: Request` arg
limiter = Limiter(key_func=get_remote_address)
