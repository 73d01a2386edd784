import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
DB_CONNECTION = "default"
GENERATE_SCHEMAS = os.environ.get("GENERATE_SCHEMAS", "0") == "1"
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
venues_ms_url = os.environ.get("VENUES_MS_URL", "http://localhost:8001")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Bulk allocation limits
MAX_BULK_CELLS = int(os.environ.get("MAX_BULK_CELLS", "1000"))
MAX_BULK_SPAN_DAYS = int(os.environ.get("MAX_BULK_SPAN_DAYS", "90"))
MAX_BULK_SLOT_SHAPES = int(os.environ.get("MAX_BULK_SLOT_SHAPES", "20"))
BULK_FAILURE_THRESHOLD = int(os.environ.get("BULK_FAILURE_THRESHOLD", "10"))
BULK_CONCURRENCY = int(os.environ.get("BULK_CONCURRENCY", "1"))

DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "5"))
PAYMENT_TOLERANCE = Decimal(os.environ.get("PAYMENT_TOLERANCE", "0.01"))
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "EUR")
