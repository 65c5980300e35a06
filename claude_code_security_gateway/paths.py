"""
Secret-path denylist matcher.

Checks file basenames touched by a tool call against the resolved deny/allow
glob patterns. Precedence: allow pattern, then session exemption, then deny
pattern. If the patterns themselves cannot be resolved the policy blocks,
since an unavailable denylist is indistinguishable from a bypassed one.
"""

import logging
import posixpath
import re
import shlex
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Set

from .exemptions import ExemptionStore
from .models import ConfigurationError, Decision, Invocation, PatternSet
from .policy import PolicyModule
from .shell import basename, split_commands, strip_wrappers

logger = logging.getLogger(__name__)

EXEMPT_PROGRAM = 'claude-security-gateway'
EXEMPT_SUBCOMMAND = 'exempt-secret'
SHELL_METACHARACTERS = set(';|&$()`<>\n\\\'"')

FILE_TOOLS = {'Read', 'Edit', 'MultiEdit', 'Write', 'NotebookEdit'}
INTERCEPTED_TOOLS = FILE_TOOLS | {'Bash', 'Grep', 'Glob'}


# ============================================================================
# Glob matching
# ============================================================================

@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> 're.Pattern':
    parts = []
    for char in pattern:
        if char == '*':
            parts.append('.*')
        elif char == '?':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile(''.join(parts), re.DOTALL)


def matches_glob(name: str, pattern: str) -> bool:
    """Whole-name glob match; only `*` and `?` are wildcards"""
    return _compile_glob(pattern).fullmatch(name) is not None


def path_basename(path: str) -> str:
    return posixpath.basename(path.rstrip('/'))


@dataclass
class PathMatch:
    denied: bool
    basename: str = ''
    pattern: Optional[str] = None


def check_path(path: str, patterns: PatternSet, exemptions: Set[str]) -> PathMatch:
    """Allow pattern > exemption > deny pattern > no match"""
    if not path:
        return PathMatch(denied=False)

    name = path_basename(path)
    if not name:
        return PathMatch(denied=False)

    for pattern in patterns.allow:
        if matches_glob(name, pattern):
            return PathMatch(denied=False, basename=name, pattern=pattern)

    for pattern in patterns.deny:
        if matches_glob(name, pattern):
            if path in exemptions or name in exemptions:
                return PathMatch(denied=False, basename=name, pattern=pattern)
            return PathMatch(denied=True, basename=name, pattern=pattern)

    return PathMatch(denied=False, basename=name)


# ============================================================================
# Bash path extraction
# ============================================================================

def extract_bash_paths(command: str, file_commands, pattern_commands, wrappers) -> List[str]:
    """Paths read or written by a shell command (best effort).

    Arguments of known file-touching programs plus every redirect target.
    The leading pattern argument of grep-like programs is not a path.
    """
    file_commands = set(file_commands)
    pattern_commands = set(pattern_commands)
    paths: List[str] = []

    for simple in split_commands(command):
        paths.extend(simple.redirects)
        words = strip_wrappers(simple.words, wrappers)
        if words and len(words) < len(simple.words) and basename(words[0]) not in file_commands:
            # Unrecognised wrapper option value: resume at the first file program
            words = next((words[i:] for i, word in enumerate(words) if basename(word) in file_commands), [])
        if not words or basename(words[0]) not in file_commands:
            continue
        name = basename(words[0])

        arguments = words[1:]
        explicit_pattern = any(a in ('-e', '-f', '--regexp', '--file') or a.startswith('--regexp=')
                               for a in arguments)
        skip_first = name in pattern_commands and not explicit_pattern
        for argument in arguments:
            if argument.startswith('-'):
                continue
            if skip_first:
                skip_first = False
                continue
            paths.append(argument)

    return paths


def is_exemption_command(command: str) -> bool:
    """`claude-security-gateway exempt-secret <path>...` with no shell tricks"""
    if any(char in SHELL_METACHARACTERS for char in command.strip()):
        return False
    commands = split_commands(command)
    if len(commands) != 1 or commands[0].redirects:
        return False
    words = commands[0].words
    return (len(words) >= 3
            and basename(words[0]) == EXEMPT_PROGRAM
            and words[1] == EXEMPT_SUBCOMMAND)


# ============================================================================
# Policy
# ============================================================================

class ProtectSecretsPolicy(PolicyModule):
    """Blocks tool calls that read or write secret files"""

    name = 'protect-secrets'
    fail_closed = True

    def __init__(self, config, exemptions: Optional[ExemptionStore] = None):
        super().__init__(config)
        self.exemptions = exemptions or ExemptionStore(config.cache.directory)

    def evaluate(self, invocation: Invocation) -> Decision:
        tool = invocation.action_kind
        if tool not in INTERCEPTED_TOOLS:
            return Decision.allow()

        if tool == 'Bash' and is_exemption_command(invocation.target):
            return Decision.allow()

        try:
            patterns = self.config.load_denylist()
        except ConfigurationError as e:
            logger.debug("Denylist unavailable: %s", e)
            return Decision.block(self.tag(
                "BLOCKED: Secret protection cache unavailable - blocking file access as a safety measure.\n"
                f"{e}"
            ))

        exemptions = self.exemptions.load()
        for candidate in self._candidates(invocation):
            match = check_path(candidate, patterns, exemptions)
            if match.denied:
                return Decision.block(self._block_message(match, candidate))

        return Decision.allow()

    def _candidates(self, invocation: Invocation) -> List[str]:
        tool = invocation.action_kind
        payload = invocation.payload

        if tool in FILE_TOOLS:
            return [payload.get('file_path') or payload.get('notebook_path') or '']

        if tool == 'Grep':
            return [payload.get('path') or '']

        if tool == 'Glob':
            # A search pattern naming a protected file is as good as reading it
            candidates = []
            pattern = payload.get('pattern') or ''
            if pattern:
                candidates.append(path_basename(pattern))
            candidates.append(payload.get('path') or '')
            return candidates

        if tool == 'Bash':
            return extract_bash_paths(
                invocation.target,
                self.config.get('file_commands', []),
                self.config.get('pattern_argument_commands', []),
                self.config.get('wrapper_commands', []),
            )

        return []

    def _block_message(self, match: PathMatch, path: str) -> str:
        return '\n'.join([
            self.tag(f"BLOCKED: Secret file access blocked: {match.basename}"),
            f"This file matches the secret/credential pattern '{match.pattern}' in the denylist.",
            "To grant temporary access for this session, ask the user for permission, then run:",
            f"{EXEMPT_PROGRAM} {EXEMPT_SUBCOMMAND} {shlex.quote(path)}",
        ])
