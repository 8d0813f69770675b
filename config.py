"""
Runtime configuration

Values come from the environment (a local .env file is loaded first).
"""
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shoppingmall")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")

# seconds between store pings from the background probe
DB_HEALTH_INTERVAL = float(os.getenv("DB_HEALTH_INTERVAL", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@okimall.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")


def cors_origins():
    client_url = os.getenv("CLIENT_URL", "")
    origins = [o.strip() for o in client_url.split(",") if o.strip()]
    return origins or ["*"]


def setup_logging(level: str = LOG_LEVEL):
    """Configure the root logger once."""
    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_okimall", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"))
        handler._okimall = True
        root.addHandler(handler)
