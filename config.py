from dotenv import load_dotenv
import os


# put overrides in .env file
load_dotenv()


HELIUM_API_URL = os.getenv("HELIUM_API_URL", "https://api.helium.io/v1")
HELIUM_DB_PATH = os.getenv("HELIUM_DB_PATH", "helium.db")

RETRY_ATTEMPTS = int(os.getenv("HELIUM_RETRY_ATTEMPTS", "10"))
RETRY_DELAY = float(os.getenv("HELIUM_RETRY_DELAY", "1.5"))
RATE_LIMIT_DELAY = float(os.getenv("HELIUM_RATE_LIMIT_DELAY", "5.0"))
PAGE_SLEEP = float(os.getenv("HELIUM_PAGE_SLEEP", "0.75"))
HOTSPOT_PAGE_SLEEP = float(os.getenv("HELIUM_HOTSPOT_PAGE_SLEEP", "0.25"))
REQUEST_TIMEOUT = float(os.getenv("HELIUM_REQUEST_TIMEOUT", "30"))

# roughly one day of blocks
HOTSPOT_REFRESH_BLOCKS = int(os.getenv("HELIUM_HOTSPOT_REFRESH_BLOCKS", "1440"))
CACHE_SIZE = int(os.getenv("HELIUM_CACHE_SIZE", "100000"))

DEFAULT_DAYS = int(os.getenv("HELIUM_DAYS", "30"))
DEFAULT_BUFFER_HOURS = int(os.getenv("HELIUM_BUFFER_HOURS", "6"))
DEFAULT_MIN_SAMPLES = int(os.getenv("HELIUM_MIN_SAMPLES", "5"))
