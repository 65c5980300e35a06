"""
Dependency typosquat detection for package-manager install commands.

Extracts the registry package names an install command asks for and compares
each against the merged popular-package list of its ecosystem. Near misses
(edit distance 1-2) and hyphen/underscore swaps are reported; exact matches
are trusted.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .models import Decision, Finding, Invocation
from .policy import PolicyModule
from .shell import basename, split_commands

logger = logging.getLogger(__name__)

# (program, verbs) -> ecosystem
MANAGERS = [
    ('npm', ('install', 'i', 'add'), 'npm'),
    ('npx', ('install', 'i', 'add'), 'npm'),
    ('yarn', ('add',), 'npm'),
    ('pnpm', ('add', 'install'), 'npm'),
    ('bun', ('add', 'install'), 'npm'),
    ('composer', ('require',), 'composer'),
    ('pip', ('install',), 'pypi'),
    ('pip3', ('install',), 'pypi'),
    ('poetry', ('add',), 'pypi'),
    ('pipenv', ('install',), 'pypi'),
]

REGISTRIES = {
    'npm': 'npmjs.com',
    'composer': 'packagist.org',
    'pypi': 'pypi.org',
}

BOOLEAN_FLAGS = {
    '--save-dev', '-D', '--dev', '--global', '-g', '--save', '-S',
    '--save-peer', '-P', '--save-optional', '-O', '--exact', '-E',
    '--tilde', '-T', '--no-save', '--legacy-peer-deps',
    '--save-exact', '--production', '--optional', '--prefer-dev',
    '--no-update', '--no-install', '--no-scripts', '--dry-run',
    '--with-all-dependencies', '-W', '-w', '-U', '--upgrade', '--user',
}

# Flags whose value is the next token
VALUE_FLAGS = {
    'npm': {'--registry', '--cache', '--prefix', '--workspace', '--tag'},
    'composer': {'--working-dir', '-d'},
    'pypi': {
        '-r', '--requirement', '-c', '--constraint', '-e', '--editable',
        '-i', '--index-url', '--extra-index-url', '-f', '--find-links',
        '-t', '--target', '--group', '--source', '-G',
    },
}

URL_PREFIXES = ('http://', 'https://', 'git+', 'git://', 'file:', 'github:', 'ssh://')
PATH_PREFIXES = ('./', '../', '/', '~/', '.')

PYPI_SEPARATORS = re.compile(r'[-_.]+')
PYPI_SPECIFIER = re.compile(r'[\[<>=!~;@ ]')
VERSION_ONLY = re.compile(r'^[\^~<>=*\d]')


@dataclass
class InstallRequest:
    ecosystem: str
    packages: List[str] = field(default_factory=list)


# ============================================================================
# Command parsing
# ============================================================================

def _manager_start(words: List[str]) -> Optional[tuple]:
    """(ecosystem, index of first argument) for a recognised install verb"""
    for index, word in enumerate(words):
        program = basename(word)
        rest = words[index + 1:]

        # python -m pip install / uv pip install / uv add
        if program.startswith('python') and rest[:3] == ['-m', 'pip', 'install']:
            return 'pypi', index + 4
        if program == 'uv':
            if rest[:2] == ['pip', 'install']:
                return 'pypi', index + 3
            if rest[:1] == ['add']:
                return 'pypi', index + 2

        for manager, verbs, ecosystem in MANAGERS:
            if program == manager and rest and rest[0] in verbs:
                return ecosystem, index + 2
    return None


def parse_installs(command: str) -> List[InstallRequest]:
    """Every install in a command line, with its ecosystem and requested names"""
    requests: List[InstallRequest] = []
    for simple in split_commands(command):
        words = simple.words
        if words and basename(words[0]) == 'ddev':
            words = words[2:] if len(words) > 1 and words[1] == 'exec' else words[1:]
        found = _manager_start(words)
        if found:
            ecosystem, start = found
            requests.append(InstallRequest(ecosystem, extract_package_names(words[start:], ecosystem)))
    return requests


def extract_package_names(arguments: List[str], ecosystem: str) -> List[str]:
    """Bare registry names from an install argument list"""
    value_flags = VALUE_FLAGS.get(ecosystem, set())
    packages: List[str] = []
    skip_next = False

    for token in arguments:
        if skip_next:
            skip_next = False
            continue

        if token.startswith('-'):
            if token in BOOLEAN_FLAGS or '=' in token:
                continue
            if token in value_flags:
                skip_next = True
            continue

        if token.startswith(URL_PREFIXES) or token.startswith(PATH_PREFIXES):
            continue

        name = _strip_version(token, ecosystem)
        if name:
            packages.append(name)

    return packages


def _strip_version(token: str, ecosystem: str) -> Optional[str]:
    if ecosystem == 'npm':
        # @scope/name@version keeps @scope/name
        at = token.find('@', 1)
        return token[:at] if at > 0 else token

    if ecosystem == 'composer':
        name = token.split(':', 1)[0]
        # Version-only tokens ("vendor/pkg ^1.0")
        if VERSION_ONLY.match(name) and '/' not in name:
            return None
        return name

    if ecosystem == 'pypi':
        if token.endswith(('.whl', '.tar.gz', '.zip')):
            return None
        return PYPI_SPECIFIER.split(token, 1)[0] or None

    return token


# ============================================================================
# Similarity
# ============================================================================

def levenshtein(a: str, b: str) -> int:
    """Edit distance over single-character insert, delete, substitute"""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_hyphen_underscore_swap(name: str, popular: str) -> bool:
    def normalize(s):
        return s.replace('-', '').replace('_', '')
    return name != popular and normalize(name) == normalize(popular)


def canonical_name(name: str, ecosystem: str) -> str:
    """PyPI names are case-insensitive and treat `-`, `_`, `.` alike"""
    if ecosystem == 'pypi':
        return PYPI_SEPARATORS.sub('-', name).lower()
    return name


def check_package(name: str, popular: List[str], ecosystem: str = 'npm') -> Optional[Finding]:
    """A Finding if `name` looks like a typosquat of a popular package"""
    subject = canonical_name(name, ecosystem)
    references = {canonical_name(p, ecosystem): p for p in popular}
    if subject in references:
        return None

    namespaced = '/' in subject
    closest = None
    for candidate, original in references.items():
        # Vendor-prefixed names only compare with vendor-prefixed names
        if ('/' in candidate) != namespaced:
            continue

        if ecosystem != 'pypi' and is_hyphen_underscore_swap(subject, candidate):
            return Finding(
                kind_label='hyphen/underscore swap',
                location=name,
                redacted_excerpt=f'differs from "{original}" only by hyphen/underscore swap',
                matched_reference=original,
            )

        if abs(len(subject) - len(candidate)) > 2:
            continue
        distance = levenshtein(subject, candidate)
        if 1 <= distance <= 2 and (closest is None or distance < closest[0]):
            closest = (distance, original)

    if closest is None:
        return None
    distance, original = closest
    plural = 's' if distance > 1 else ''
    return Finding(
        kind_label='edit distance',
        location=name,
        redacted_excerpt=f'name is {distance} character{plural} different from "{original}"',
        matched_reference=original,
    )


# ============================================================================
# Policy
# ============================================================================

class TyposquatPolicy(PolicyModule):
    """Blocks installs of names suspiciously close to popular packages"""

    name = 'dependency-typosquat-checker'
    fail_closed = False

    def evaluate(self, invocation: Invocation) -> Decision:
        if invocation.action_kind != 'Bash' or not invocation.target:
            return Decision.allow()

        requests = [r for r in parse_installs(invocation.target) if r.packages]
        if not requests:
            return Decision.allow()

        suspects: List[Finding] = []
        registries: List[str] = []
        for request in requests:
            logger.debug("%s install: %s", request.ecosystem, ", ".join(request.packages))
            popular = self.config.load_popular_packages(request.ecosystem)
            if not popular:
                continue
            found = [f for f in (check_package(p, popular, request.ecosystem) for p in request.packages) if f]
            registry = REGISTRIES.get(request.ecosystem, request.ecosystem)
            if found and registry not in registries:
                registries.append(registry)
            suspects.extend(found)
        if not suspects:
            return Decision.allow()

        parts = [self.tag("Suspicious package name(s) detected:"), ""]
        for finding in suspects:
            parts.append(f'  "{finding.location}" - {finding.redacted_excerpt}')
        parts.append(f"\nThis may be a typosquat attack. Please verify on {' and '.join(registries)} before installing.")
        parts.append("If the package name is correct, ask the user to confirm and re-run the command.")
        return Decision.block('\n'.join(parts))
