from typing import Optional

from loguru import logger
from supabase import Client, create_client

from cirql.core.config import SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

_client: Optional[Client] = None


def supabase_admin() -> Client:
    """Service-role client used to read user profiles; created on first use."""
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("PROFILE_SOURCE=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")

    _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    logger.info("Supabase profile client created")
    return _client
