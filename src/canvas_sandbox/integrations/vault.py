import os

from loguru import logger


class VaultIntegrator:
    """
    Environment-backed secret lookup.
    Reads the plain key first, then the CANVAS_SANDBOX_ prefixed form.
    """

    def __init__(self, prefix: str = "CANVAS_SANDBOX_"):
        self.prefix = prefix

    def get_secret(self, key: str) -> str | None:
        """
        Fetch a secret from the environment.
        """
        val = os.getenv(key)
        if not val:
            val = os.getenv(f"{self.prefix}{key}")

        if not val:
            logger.debug(f"Secret {key} not found in environment.")

        return val
