"""Test package for relay bot unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
