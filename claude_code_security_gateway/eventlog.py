"""
Append-only decision log
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ConfigManager
from .models import Decision, Invocation

logger = logging.getLogger(__name__)

EVENT_LOG_FILENAME = 'events.log'


class DecisionLog:
    """Writes one JSON line per security decision"""

    def __init__(self, config: ConfigManager, path: Optional[Path] = None):
        self.config = config
        self.path = path or (config.cache.directory / EVENT_LOG_FILENAME)

    def log_decision(self, policy: str, invocation: Invocation, decision: Decision):
        """Log a security decision"""
        should_log = self.config.get_system_config(
            'log_approvals' if decision.allowed else 'log_denials',
            not decision.allowed  # Default: log denials
        )
        if not should_log:
            return

        self.append({
            'policy': policy,
            'tool': invocation.action_kind,
            'action': decision.verdict.value,
            'reason': decision.message,
            'cwd': invocation.cwd,
        })

    def append(self, entry: dict):
        """Append a single event line; a failed write never changes a decision"""
        record: Dict[str, Any] = {'timestamp': datetime.now().isoformat()}
        record.update(entry)
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(record) + '\n')
        except OSError as e:
            logger.debug("Could not write event log %s: %s", self.path, e)
