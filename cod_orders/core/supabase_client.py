# cod_orders/core/supabase_client.py
from functools import lru_cache
from supabase import create_client, Client

from cod_orders.core.config import get_settings

settings = get_settings()


@lru_cache
def supabase_admin() -> Client:
    """
    Create a Supabase client with the service role key.

    Use cases:
      - invoking server-side edge functions (send-sms)
      - any operation that needs to bypass RLS

    WARNING:
      - Never expose service role key to frontend.
      - Only backend should call this.

    Raises:
        RuntimeError: if SUPABASE_SERVICE_ROLE_KEY is not set.
    """
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_SERVICE_ROLE_KEY in .env")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


def invoke_function(name: str, body: dict) -> None:
    """
    Invoke a Supabase edge function with a JSON body.

    Raises:
        Any exception raised by the Supabase client if the call fails.
    """
    supabase_admin().functions.invoke(name, invoke_options={"body": body})
