from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Shared cache: like guard entries
cache = Cache()

# Per-address fixed-window throttling; storage comes from RATELIMIT_STORAGE_URI
limiter = Limiter(key_func=get_remote_address, strategy="fixed-window")
