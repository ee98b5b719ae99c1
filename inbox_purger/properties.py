"""
Property Store - persistent key/value strings backed by shelve
"""

import logging
from pathlib import Path
from typing import Optional

from inbox_purger.storage import open_shelf


logger = logging.getLogger(__name__)


class PropertyStore:
    """String key/value store; each call opens the shelf so separate processes see updates"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> Optional[str]:
        with open_shelf(self.path) as shelf:
            return shelf.get(key)

    def set(self, key: str, value: str) -> None:
        with open_shelf(self.path) as shelf:
            shelf[key] = str(value)
        logger.debug(f"Property {key} = {value}")

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if value is None:
            return default
        return int(value)
