"""
Credential scanner for staged git changes.

Runs on `git commit`: looks at the lines the commit would add and classifies
each against an ordered signature library, most specific first. Test
fixtures, docs, comments and obvious placeholders are not reported. Matched
values are redacted before they reach any message.
"""

import logging
import re
import subprocess
from typing import Callable, List, Optional, Tuple

from .models import ConfigurationError, Decision, Finding, Invocation, PatternSet
from .paths import matches_glob, path_basename
from .policy import PolicyModule
from .shell import find_subcommand, split_commands

logger = logging.getLogger(__name__)

CREDENTIAL_PATTERNS: List[Tuple['re.Pattern', str]] = [
    # Cloud providers
    (re.compile(r'AKIA[0-9A-Z]{16}'), "AWS Access Key ID"),
    (re.compile(r'-----BEGIN\s+(?:RSA|EC|DSA|OPENSSH|PGP)\s+PRIVATE\s+KEY-----'), "Private Key"),
    # Source forges
    (re.compile(r'ghp_[A-Za-z0-9]{36}'), "GitHub Personal Access Token"),
    (re.compile(r'gho_[A-Za-z0-9]{36}'), "GitHub OAuth Token"),
    (re.compile(r'ghu_[A-Za-z0-9]{36}'), "GitHub User-to-Server Token"),
    (re.compile(r'ghs_[A-Za-z0-9]{36}'), "GitHub Server-to-Server Token"),
    (re.compile(r'ghr_[A-Za-z0-9]{36}'), "GitHub Refresh Token"),
    (re.compile(r'glpat-[A-Za-z0-9_\-]{20,}'), "GitLab Personal Access Token"),
    # Chat
    (re.compile(r'xoxb-[0-9]{10,}-[0-9]{10,}-[A-Za-z0-9]{24,}'), "Slack Bot Token"),
    (re.compile(r'xoxp-[0-9]{10,}-[0-9]{10,}-[A-Za-z0-9]{24,}'), "Slack User Token"),
    (re.compile(r'https://hooks\.slack\.com/services/T[A-Z0-9]+/B[A-Z0-9]+/[A-Za-z0-9]+'), "Slack Webhook URL"),
    (re.compile(r'https://discord(?:app)?\.com/api/webhooks/\d+/[A-Za-z0-9_\-]+'), "Discord Webhook URL"),
    # Payments and messaging (live keys only)
    (re.compile(r'sk_live_[A-Za-z0-9]{24,}'), "Stripe Live Secret Key"),
    (re.compile(r'rk_live_[A-Za-z0-9]{24,}'), "Stripe Live Restricted Key"),
    (re.compile(r'SK[a-f0-9]{32}'), "Twilio API Key"),
    (re.compile(r'SG\.[A-Za-z0-9_\-]{22}\.[A-Za-z0-9_\-]{43}'), "SendGrid API Key"),
    (re.compile(r'AIza[A-Za-z0-9_\-]{35}'), "Google API Key"),
    (re.compile(r'eyJ[A-Za-z0-9_\-]{10,}\.eyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{10,}'), "JWT Token"),
    (re.compile(r'(?:mysql|postgres|postgresql|mongodb|redis|amqp)://[^:\s]+:[^@\s]+@', re.IGNORECASE),
     "Database connection string with credentials"),
    # Generic assignments
    (re.compile(r'(?:api[_-]?key|api[_-]?secret|secret[_-]?key|access[_-]?key|auth[_-]?token|secret[_-]?token)'
                r'\s*[=:]\s*[\'"][A-Za-z0-9/+=_.~\-]{8,}[\'"]', re.IGNORECASE),
     "API Key/Secret assignment"),
    (re.compile(r'(?:password|passwd|pwd|db_password|database_password|mysql_password|postgres_password'
                r'|redis_password)\s*[=:]\s*[\'"][^\'"]{8,}[\'"]', re.IGNORECASE),
     "Password assignment"),
    (re.compile(r'(?:SECRET|TOKEN|PRIVATE[_-]?KEY|SIGNING[_-]?KEY|ENCRYPTION[_-]?KEY)'
                r'\s*[=:]\s*[\'"][A-Za-z0-9/+=]{32,}[\'"]', re.IGNORECASE),
     "High-entropy secret value"),
]

SKIP_FILE_PATTERNS = [
    re.compile(p) for p in (
        r'(?:^|/)tests?/', r'(?:^|/)specs?/', r'(?:^|/)__tests?__/', r'(?:^|/)__mocks?__/',
        r'\.test\.', r'\.spec\.', r'(?:^|/)fixtures?/', r'\.example$',
        r'\.sample$', r'\.md$', r'CHANGELOG', r'README',
    )
]

PLACEHOLDER_VALUES = {
    'test', 'testing', 'example', 'changeme', 'password', 'secret',
    'xxx', 'yyy', 'zzz', 'dummy', 'fake', 'sample', 'placeholder',
    'your-api-key', 'your-secret', 'your-token', 'replace-me',
    'todo', 'fixme', 'change-me', 'insert-here',
}

COMMENT_PREFIXES = ('#', '//', '/*', '*', '<!--', '%', '-- ')

HUNK_HEADER = re.compile(r'^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@')


# ============================================================================
# Line classification
# ============================================================================

def should_skip_file(path: str) -> bool:
    return any(p.search(path) for p in SKIP_FILE_PATTERNS)


def is_comment(line: str) -> bool:
    return line.strip().startswith(COMMENT_PREFIXES)


def extract_value(text: str) -> str:
    """Value side of `key = value` / `key: value`, unquoted"""
    for delimiter in ('=', ':'):
        if delimiter in text:
            return text.split(delimiter, 1)[1].strip().strip('\'"` ')
    return text.strip('\'"` ')


def is_placeholder(text: str) -> bool:
    value = extract_value(text).lower()
    if any(value == p or value.startswith(p) for p in PLACEHOLDER_VALUES):
        return True
    cleaned = value.replace('-', '').replace('_', '')
    return bool(cleaned) and len(set(cleaned)) <= 2


def redact(text: str) -> str:
    """Keep only the edges of a matched secret"""
    if len(text) <= 12:
        return text[:3] + '...' + text[-2:]
    return text[:6] + '...' + text[-4:]


def classify_line(content: str) -> Optional[Tuple[str, str]]:
    """First matching signature as (label, matched text), placeholders excluded"""
    for pattern, label in CREDENTIAL_PATTERNS:
        for match in pattern.finditer(content):
            if not is_placeholder(match.group(0)):
                return label, match.group(0)
    return None


# ============================================================================
# Diff scanning
# ============================================================================

def protected_file_pattern(path: str, patterns: PatternSet) -> Optional[str]:
    name = path_basename(path)
    if any(matches_glob(name, p) for p in patterns.allow):
        return None
    for pattern in patterns.deny:
        if matches_glob(name, pattern):
            return pattern
    return None


def scan_diff(diff: str, protected: Optional[PatternSet] = None) -> List[Finding]:
    """Findings for the added lines of a unified diff. Pure function."""
    findings: List[Finding] = []
    current_file = 'unknown'
    line_number = 0

    for line in diff.split('\n'):
        if line.startswith('+++ '):
            target = line[4:].strip()
            current_file = target[2:] if target.startswith('b/') else target
            if protected and target != '/dev/null':
                pattern = protected_file_pattern(current_file, protected)
                if pattern:
                    findings.append(Finding(
                        kind_label="Protected file staged",
                        location=current_file,
                        redacted_excerpt=path_basename(current_file),
                        matched_reference=pattern,
                    ))
            continue

        hunk = HUNK_HEADER.match(line)
        if hunk:
            line_number = int(hunk.group(1))
            continue

        if line.startswith('-') or line.startswith('\\'):
            continue
        if not line.startswith('+'):
            # Context line
            line_number += 1
            continue

        content = line[1:]
        number = line_number
        line_number += 1

        if current_file == '/dev/null' or should_skip_file(current_file):
            continue
        if is_comment(content):
            continue

        hit = classify_line(content)
        if hit:
            label, matched = hit
            findings.append(Finding(
                kind_label=label,
                location=f'{current_file}:{number}' if number else current_file,
                redacted_excerpt=redact(matched),
            ))

    return findings


def format_findings(findings: List[Finding], limit: int = 10) -> List[str]:
    lines = []
    for finding in findings[:limit]:
        detail = finding.redacted_excerpt
        if finding.matched_reference:
            detail += f" (matches {finding.matched_reference})"
        lines.append(f"  - {finding.kind_label} in {finding.location}: {detail}")
    if len(findings) > limit:
        lines.append(f"  ... and {len(findings) - limit} more")
    return lines


# ============================================================================
# Git integration
# ============================================================================

def commit_arguments(command: str) -> Optional[List[str]]:
    """Arguments after `git commit` in the first commit sub-command, or None"""
    for simple in split_commands(command):
        index = find_subcommand(simple.words, 'git', ['commit'])
        if index >= 0:
            return simple.words[index:]
    return None


def commits_all(arguments: List[str]) -> bool:
    """`git commit -a` / `--all` / combined short flags such as `-am`"""
    for argument in arguments:
        if argument == '--all':
            return True
        if argument.startswith('-') and not argument.startswith('--') and 'a' in argument[1:]:
            # Stop at -m: anything after it in the same token is the message
            flags = argument[1:].split('m', 1)[0]
            if 'a' in flags:
                return True
    return False


def staged_diff(cwd: Optional[str], include_unstaged: bool = False) -> str:
    """`git diff --cached` (or against HEAD for `commit -a`)"""
    args = ['git', 'diff', 'HEAD'] if include_unstaged else ['git', 'diff', '--cached']
    result = subprocess.run(args, cwd=cwd or None, capture_output=True, text=True)
    if result.returncode != 0:
        logger.debug("%s exited %d: %s", ' '.join(args), result.returncode, result.stderr.strip())
        return ''
    return result.stdout


class ProtectCredentialsPolicy(PolicyModule):
    """Blocks commits whose staged changes contain credentials"""

    name = 'protect-credentials'
    fail_closed = True

    def __init__(self, config, diff_provider: Optional[Callable[[Optional[str], bool], str]] = None):
        super().__init__(config)
        self.diff_provider = diff_provider or staged_diff

    def evaluate(self, invocation: Invocation) -> Decision:
        if invocation.action_kind != 'Bash' or not invocation.target:
            return Decision.allow()

        arguments = commit_arguments(invocation.target)
        if arguments is None:
            return Decision.allow()

        try:
            protected = self.config.load_denylist()
        except ConfigurationError as e:
            return Decision.block(self.tag(
                f"BLOCKED: Secret protection cache unavailable - cannot verify staged files.\n{e}"
            ))

        diff = self.diff_provider(invocation.cwd, commits_all(arguments))
        findings = scan_diff(diff, protected)
        if not findings:
            return Decision.allow()

        lines = [
            self.tag("BLOCKED: Potential credentials detected in staged changes. Remove secrets before committing."),
            "",
            "Findings:",
        ]
        lines.extend(format_findings(findings, self.config.get('max_findings', 10)))
        lines.extend([
            "",
            "Use environment variables or a secret manager instead of hardcoding secrets.",
            "If these are false positives, review and unstage the flagged content.",
        ])
        return Decision.block('\n'.join(lines))
