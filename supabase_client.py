# supabase_client.py
from supabase import AsyncClient, acreate_client

import config


async def get_supabase() -> AsyncClient:
    url = config.SUPABASE_URL
    key = config.SUPABASE_KEY

    if not url or not key:
        raise RuntimeError("Set SUPABASE_URL and SUPABASE_KEY in .env or environment variables")

    return await acreate_client(url, key)
