def load_env_file() -> None:
    """Load variables from a local .env file without overriding the environment.

    WHAT:
        Reads `.env` from the working directory into os.environ.
    WHY:
        Developers keep DATABASE_URL, JWT_SECRET and Shopify credentials in a
        local file; deployed containers export them directly and must win.
    """
    import logging
    from dotenv import load_dotenv

    logger = logging.getLogger(__name__)

    if load_dotenv(override=False):
        logger.info("[ENV] Loaded local .env file (exported variables kept)")
    else:
        logger.debug("[ENV] No local .env file found")


def require_env(name: str) -> str:
    """Return a mandatory environment variable or raise RuntimeError."""
    import os

    value = os.getenv(name)
    if not value:
        load_env_file()
        value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value
