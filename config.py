"""Runtime configuration for the sync engine."""

import os

from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SCHEMA = os.getenv("SCHEMA", "public")

CACHE_PATH = os.getenv("CACHE_PATH", "data/cache.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Row caps per remote read
ORDERS_LIMIT = 100
ORDER_ITEMS_LIMIT = 500
SERVICES_LIMIT = 500
DEFAULT_LIMIT = 100

ORDERS_CACHE_LIMIT = 50  # only the most recent orders go to the snapshot
CACHE_DEBOUNCE_SECONDS = 2.0

REALTIME_DEBOUNCE_SECONDS = 3.0
REALTIME_START_DELAY_SECONDS = 5.0
REALTIME_CHANNEL = "app-changes"
