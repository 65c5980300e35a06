"""
Session-scoped exemptions from the secret-path denylist
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Set

from .cache import default_cache_dir

logger = logging.getLogger(__name__)

EXEMPTION_FILENAME = 'secret-overrides'


class ExemptionStore:
    """Append-only, newline-delimited list of exempted paths or basenames"""

    def __init__(self, directory: Optional[Path] = None):
        self.path = Path(directory or default_cache_dir()) / EXEMPTION_FILENAME

    def load(self) -> Set[str]:
        """Re-read the whole store; a missing store means no exemptions"""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return {line.strip() for line in f if line.strip()}
        except FileNotFoundError:
            return set()

    def add(self, entries: Iterable[str]) -> int:
        """Append entries, one per line. Returns how many were written."""
        entries = [e.strip() for e in entries if e and e.strip() and '\n' not in e]
        if not entries:
            return 0
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            for entry in entries:
                f.write(entry + '\n')
        logger.debug("Exempted for this session: %s", ', '.join(entries))
        return len(entries)

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
