"""
Commit message linter for inline `git commit` messages.

Only messages given literally on the command line can be checked; an
editor-based commit is always allowed. Error-level issues block the commit,
warnings are surfaced but let it through.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .models import Decision, Invocation
from .policy import PolicyModule
from .shell import find_subcommand, split_commands

logger = logging.getLogger(__name__)

IMPERATIVE_SUGGESTIONS = {
    'added': 'Add',
    'fixed': 'Fix',
    'changed': 'Change',
    'updated': 'Update',
    'removed': 'Remove',
    'deleted': 'Delete',
    'refactored': 'Refactor',
    'implemented': 'Implement',
    'created': 'Create',
    'modified': 'Modify',
    'moved': 'Move',
    'renamed': 'Rename',
}
PAST_TENSE_VERBS = list(IMPERATIVE_SUGGESTIONS)

SKIP_FLAGS = {
    'amend': '--amend',
    'fixup': '--fixup',
    'squash': '--squash',
}

CONVENTIONAL_PREFIX = re.compile(r'^[a-z]+(\([^)]*\))?!?:\s*', re.IGNORECASE)

HEREDOC = re.compile(r'\$\(\s*cat\s+<<-?\s*[\'"]?(\w+)[\'"]?\s*\n(.*?)\n\s*\1\s*\)', re.DOTALL)
SHORT_FLAG = r'(?:^|\s)-[a-zA-Z]*m\s*'
MESSAGE_PATTERNS = [
    # (regex, unescape)
    (re.compile(SHORT_FLAG + r'\$\'((?:[^\'\\]|\\.)*)\''), 'ansi'),
    (re.compile(SHORT_FLAG + r'"((?:[^"\\]|\\.)*)"'), 'double'),
    (re.compile(SHORT_FLAG + r"'([^']*)'"), 'single'),
    (re.compile(r'--message(?:=|\s+)"((?:[^"\\]|\\.)*)"'), 'double'),
    (re.compile(r"--message(?:=|\s+)'([^']*)'"), 'single'),
]


@dataclass
class Issue:
    level: str
    message: str


# ============================================================================
# Extraction
# ============================================================================

def is_git_commit(command: str) -> bool:
    return any(find_subcommand(c.words, 'git', ['commit']) >= 0 for c in split_commands(command))


def should_skip(command: str, allow_types: List[str]) -> bool:
    """Amend/fixup/squash commits are exempt when configured"""
    for kind in allow_types:
        flag = SKIP_FLAGS.get(kind)
        if flag and re.search(re.escape(flag) + r'\b', command):
            return True
    return False


def _unescape(text: str, style: str) -> str:
    if style == 'single':
        return text
    if style == 'ansi':
        return (text.replace('\\n', '\n').replace('\\t', '\t')
                .replace("\\'", "'").replace('\\\\', '\\'))
    return text.replace('\\"', '"').replace('\\n', '\n')


def extract_message(command: str) -> Optional[str]:
    """Literal commit message, or None for an editor commit.

    Several `-m` options are joined as separate paragraphs, like git does.
    """
    heredoc = HEREDOC.search(command)
    if heredoc:
        return heredoc.group(2).strip()

    found = []
    for pattern, style in MESSAGE_PATTERNS:
        for match in pattern.finditer(command):
            found.append((match.start(), match.end(), _unescape(match.group(1), style)))

    # Options quoted inside an earlier message are part of its text
    messages: List[str] = []
    end = -1
    for start, stop, text in sorted(found):
        if start >= end:
            messages.append(text)
            end = stop
    return '\n\n'.join(messages) if messages else None


# ============================================================================
# Validation
# ============================================================================

def imperative_for(verb: str) -> str:
    return IMPERATIVE_SUGGESTIONS.get(verb) or re.sub(r'ed$', '', verb).capitalize()


def validate(message: str, rules: Dict[str, Any]) -> List[Issue]:
    """All issues with a commit message, errors and warnings"""
    if not message or not message.strip():
        return [Issue('error', 'Commit message is empty')]

    lines = message.split('\n')
    subject = lines[0].strip()
    if not subject:
        return [Issue('error', 'Subject line is empty')]

    issues: List[Issue] = []
    max_length = rules.get('subject_max_length', 72)
    warn_length = rules.get('subject_warn_length', 50)

    if len(subject) > max_length:
        issues.append(Issue('error', f"Subject line is {len(subject)} chars (max {max_length}). "
                                     f"Shorten it or move details to the body."))
    elif len(subject) > warn_length:
        issues.append(Issue('warn', f"Subject line is {len(subject)} chars (recommended max {warn_length}). "
                                    f"Consider shortening it."))

    if rules.get('no_trailing_period', True) and subject.endswith('.'):
        issues.append(Issue('error', 'Subject line should not end with a period. Remove the trailing "."'))

    if rules.get('require_imperative_mood', True):
        words = CONVENTIONAL_PREFIX.sub('', subject).split()
        first_word = words[0].lower() if words else ''
        if first_word in PAST_TENSE_VERBS:
            issues.append(Issue('error', f'Subject starts with past tense "{first_word.capitalize()}". '
                                         f'Use imperative mood instead (e.g., "{imperative_for(first_word)}").'))

    if len(lines) > 1 and lines[1].strip():
        issues.append(Issue('error', 'Missing blank line between subject and body. '
                                     'Add an empty line after the subject.'))

    return issues


# ============================================================================
# Policy
# ============================================================================

class CommitMessagePolicy(PolicyModule):
    """Checks inline commit messages against the configured rules"""

    name = 'commit-message-linter'
    fail_closed = False

    def evaluate(self, invocation: Invocation) -> Decision:
        command = invocation.target
        if invocation.action_kind != 'Bash' or not command or not is_git_commit(command):
            return Decision.allow()

        rules = self.config.load_commit_rules()
        if should_skip(command, rules.get('allow_types') or []):
            return Decision.allow()

        message = extract_message(command)
        if message is None:
            # Editor commit, nothing to inspect
            return Decision.allow()

        issues = validate(message, rules)
        logger.debug("Commit message has %d issue(s)", len(issues))
        errors = [i for i in issues if i.level == 'error']
        warnings = [i for i in issues if i.level == 'warn']
        if not issues:
            return Decision.allow()

        parts = [self.tag("Commit message issues found:"), ""]
        parts.extend(f"  ERROR: {i.message}" for i in errors)
        parts.extend(f"  WARNING: {i.message}" for i in warnings)
        parts.append("\nFix the commit message and try again.")
        report = '\n'.join(parts)

        if errors:
            return Decision.block(report)
        return Decision.warn(report)
