"""
Per-user pattern cache.

A tiny key/value store of JSON documents living in a session-scoped
directory. Writes are atomic (temp file in the same directory, then
os.replace) so a concurrent reader sees either the old or the new
document, never half of one. A missing or corrupt entry reads as None.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

CACHE_DIR_ENV = 'CLAUDE_SECURITY_CACHE_DIR'


def default_cache_dir() -> Path:
    """`$CLAUDE_SECURITY_CACHE_DIR` or `/tmp/claude-security-<uid>`"""
    override = os.environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override)
    uid = os.getuid() if hasattr(os, 'getuid') else 'default'
    # /tmp rather than tempfile.gettempdir() so shell helpers agree on the path
    return Path(f'/tmp/claude-security-{uid}')


class PatternCache:
    """Race-safe JSON key/value store with atomic replace"""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else default_cache_dir()

    def path_for(self, key: str) -> Path:
        return self.directory / f'{key}.json'

    def ensure_directory(self) -> Path:
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.directory

    def read(self, key: str) -> Optional[Any]:
        """Return the stored document, or None on a cache miss"""
        path = self.path_for(key)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("Cache entry %s unreadable, treating as miss: %s", path, e)
            return None

    def write(self, key: str, value: Any):
        """Atomically replace the stored document"""
        self.ensure_directory()
        target = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(prefix=f'.{key}.', suffix='.tmp', dir=self.directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(value, f)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def invalidate(self, key: str):
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass
