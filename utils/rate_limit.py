"""Shared slowapi limiter (in-memory storage, keyed by client address)."""
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import DEFAULT_RATE_LIMIT, RATE_LIMIT_ENABLED

limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT], enabled=RATE_LIMIT_ENABLED)
