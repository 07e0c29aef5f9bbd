from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed on client IP; webhook limits are applied per route
limiter = Limiter(key_func=get_remote_address)
