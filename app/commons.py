"""
Shared singletons used across multiple modules.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from configs.config import get_config

cfg = get_config()

# ── Shared rate-limiter instance ─────────────────────────────────────────
# Created here (not in main.py) so that route modules can import it
# without a circular dependency.
limiter = Limiter(key_func=get_remote_address, enabled=cfg.RATE_LIMIT_ENABLED)
