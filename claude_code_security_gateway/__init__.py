"""
Claude Code Security Gateway - PreToolUse hooks for secret files,
staged credentials, dependency typosquats and commit messages
"""

from .models import ConfigurationError, Decision, Finding, Invocation, PatternSet, Verdict

__version__ = '1.0.0'

__all__ = [
    'ConfigurationError',
    'Decision',
    'Finding',
    'Invocation',
    'PatternSet',
    'Verdict',
]
