from geopresence.core.config import settings
from geopresence.core.log import configure_logging

__all__ = ["settings", "configure_logging"]
