import logging
import os

from dotenv import load_dotenv

# 1. Load the base ".env" first (common/shared values)
load_dotenv(".env")

# 2. Determine specific environment
ENV = os.getenv("APP_ENV", "sandbox").lower()

env_file_map = {
    "sandbox": ".env.sandbox",
    "simulation": ".env.simulation",
    "prod": ".env.prod"
}

# 3. Load the specific env file, overriding base values
specific_env_file = env_file_map.get(ENV)
if specific_env_file:
    load_dotenv(specific_env_file, override=True)

DEFAULT_EINVOICING_URL = "https://gw-fatoora.zatca.gov.sa/e-invoicing"

default_api_ext = {
    "sandbox": "developer-portal",
    "simulation": "simulation",
    "prod": "core"
}

# 4. Access variables
EINVOICING_URL = os.getenv("EINVOICING_API", DEFAULT_EINVOICING_URL).rstrip("/")
API_EXT = os.getenv("API_EXT", default_api_ext.get(ENV, "developer-portal")).strip("/")
API_VERSION = os.getenv("API_VERSION", "V2")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def api_url(path: str) -> str:
    return f"{EINVOICING_URL}/{API_EXT}/{path.lstrip('/')}"


def get_logger(name: str, filename: str) -> logging.Logger:
    """
    File logger under LOG_DIR. Handlers from a previous call are dropped so
    re-importing a module does not duplicate every line.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(LOG_LEVEL)

    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(os.path.join(LOG_DIR, filename))
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    return logger
