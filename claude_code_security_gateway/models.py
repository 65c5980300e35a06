"""
Data models shared by the gateway's policy modules
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ConfigurationError(Exception):
    """A required configuration tier could not be read"""


class Verdict(Enum):
    ALLOW = 'allow'
    BLOCK = 'block'
    WARN = 'warn'


@dataclass
class Decision:
    """Terminal output of every policy module"""
    verdict: Verdict
    message: Optional[str] = None

    @classmethod
    def allow(cls):
        return cls(verdict=Verdict.ALLOW)

    @classmethod
    def block(cls, message: str):
        return cls(verdict=Verdict.BLOCK, message=message)

    @classmethod
    def warn(cls, message: str):
        return cls(verdict=Verdict.WARN, message=message)

    @property
    def allowed(self) -> bool:
        return self.verdict is not Verdict.BLOCK


@dataclass
class Invocation:
    """One attempted tool action, read fresh per process"""
    action_kind: str
    target: str
    payload: Dict[str, Any]
    raw: Dict[str, Any] = field(default_factory=dict)
    cwd: Optional[str] = None


@dataclass
class PatternSet:
    """Resolved deny/allow glob patterns; allow wins over deny"""
    deny: List[str] = field(default_factory=list)
    allow: List[str] = field(default_factory=list)


@dataclass
class Finding:
    """A single credential or typosquat hit, used only to build a message"""
    kind_label: str
    location: str
    redacted_excerpt: str
    matched_reference: Optional[str] = None
