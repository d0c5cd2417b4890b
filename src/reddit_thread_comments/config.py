import os

try:
    from dotenv import load_dotenv  # type: ignore

    load_dotenv()
except ModuleNotFoundError:
    pass


# Reddit public JSON endpoints (non-official)
REDDIT_WWW_URL = os.getenv("REDDIT_WWW_URL", "https://www.reddit.com")

# Fetch discipline: every attempt is capped by REQUEST_TIMEOUT seconds,
# backoff doubles from FETCH_BACKOFF_BASE (2s, 4s, ...)
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))
FETCH_MAX_ATTEMPTS = int(os.getenv("FETCH_MAX_ATTEMPTS", "3"))
FETCH_BACKOFF_BASE = float(os.getenv("FETCH_BACKOFF_BASE", "2.0"))

# morechildren expansion (API accepts at most 100 ids per call)
MORE_CHILDREN_BATCH = min(100, int(os.getenv("MORE_CHILDREN_BATCH", "100")))
MORE_CHILDREN_DELAY = float(os.getenv("MORE_CHILDREN_DELAY", "1.0"))

# Run input defaults
DEFAULT_RESULTS_WANTED = int(os.getenv("DEFAULT_RESULTS_WANTED", "20"))
UNBOUNDED_RESULTS = 2**53 - 1

# Dataset sink
PUSH_BATCH_SIZE = int(os.getenv("PUSH_BATCH_SIZE", "20"))
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "storage/datasets/default")

# Comma-separated proxy URLs, rotated per request attempt
PROXY_URLS = [p.strip() for p in os.getenv("PROXY_URLS", "").split(",") if p.strip()]
