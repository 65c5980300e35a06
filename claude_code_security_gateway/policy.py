"""
Base class for policy modules
"""

from abc import ABC, abstractmethod

from .config import ConfigManager
from .models import Decision, Invocation


class PolicyModule(ABC):
    """One security check, evaluated once per intercepted action.

    `fail_closed` decides what an unexpected error inside `evaluate`
    turns into: Block for data-loss protection, Allow for advisory checks.
    """

    name = 'policy'
    fail_closed = False

    def __init__(self, config: ConfigManager):
        self.config = config

    @abstractmethod
    def evaluate(self, invocation: Invocation) -> Decision:
        """Render a decision for one invocation"""
        pass

    def tag(self, message: str) -> str:
        return f"[{self.name}] {message}"
