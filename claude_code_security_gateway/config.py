"""
Layered configuration for the security gateway.

Every policy domain is assembled from three tiers, later tiers adding to
(never removing from) earlier ones:

    1. Built-in defaults   <package>/config/default-<domain>.json  (required)
    2. User global         ~/.claude/...                             (optional)
    3. Project local       <project>/.claude/...                     (optional)

Set-valued domains (secret paths, popular packages) are merged as a
deduplicated union and persisted to the per-user PatternCache. The commit
rules domain is a flat object merged by shallow override on top of a
hardcoded fallback.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .cache import PatternCache
from .models import ConfigurationError, PatternSet

logger = logging.getLogger(__name__)

PACKAGE_CONFIG_DIR = Path(__file__).parent / 'config'
DEFAULTS_DIR_ENV = 'CLAUDE_SECURITY_DEFAULTS_DIR'
PROJECT_DIR_ENV = 'CLAUDE_PROJECT_DIR'
DEBUG_ENV = 'CLAUDE_SECURITY_DEBUG'

CONFIG_SUFFIXES = ('.json', '.yaml', '.yml')

DENY_CACHE_KEY = 'deny-patterns'
ALLOW_CACHE_KEY = 'allow-patterns'
DENY_SOURCES_KEY = 'deny-sources'
POPULAR_SOURCES_KEY = 'popular-sources'
POPULAR_CACHE_PREFIX = 'popular-'
ECOSYSTEMS = ('npm', 'composer', 'pypi')

COMMIT_RULES_FALLBACK = {
    'subject_max_length': 72,
    'subject_warn_length': 50,
    'require_imperative_mood': True,
    'no_trailing_period': True,
    'allow_types': ['fixup', 'squash', 'amend'],
}

DEFAULT_SETTINGS = {
    'wrapper_commands': [
        'timeout', 'time', 'nice', 'nohup', 'strace', 'ltrace',
        'env', 'watch', 'xargs', 'parallel', 'caffeinate', 'unbuffer',
        'sudo', 'command', 'exec'
    ],
    'file_commands': [
        'cat', 'tac', 'head', 'tail', 'less', 'more', 'bat', 'nl',
        'grep', 'egrep', 'fgrep', 'rg', 'sed', 'awk', 'source', '.',
        'cp', 'mv', 'strings', 'xxd', 'od', 'base64', 'diff'
    ],
    # First positional argument is a pattern/script, not a file
    'pattern_argument_commands': ['grep', 'egrep', 'fgrep', 'rg', 'sed', 'awk'],
    'max_findings': 10,
    'system_config': {
        'debug_mode': False,
        'log_denials': True,
        'log_approvals': False
    }
}


# ============================================================================
# Tier loading
# ============================================================================

def load_document(path: Path) -> Optional[Any]:
    """Parse one JSON or YAML file; None if absent or corrupt"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix in ('.yaml', '.yml'):
                return yaml.safe_load(f)
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.debug("Ignoring unreadable config %s: %s", path, e)
        return None


def load_tier(stem: Path) -> Optional[Any]:
    """Load the first readable `<stem>.json|.yaml|.yml`"""
    for suffix in CONFIG_SUFFIXES:
        document = load_document(stem.with_name(stem.name + suffix))
        if document is not None:
            return document
    return None


def tier_sources(stems: Iterable[Path]) -> List[List[Any]]:
    """[path, mtime_ns] of every tier file present; a cache built from other sources is stale"""
    sources: List[List[Any]] = []
    for stem in stems:
        for suffix in CONFIG_SUFFIXES:
            path = stem.with_name(stem.name + suffix)
            try:
                sources.append([str(path), path.stat().st_mtime_ns])
            except FileNotFoundError:
                continue
    return sources


def as_pattern_set(document: Any) -> Optional[PatternSet]:
    """`{deny, allow}` object or bare array (deny only)"""
    if isinstance(document, list):
        return PatternSet(deny=[str(p) for p in document], allow=[])
    if isinstance(document, dict):
        deny = document.get('deny')
        allow = document.get('allow')
        return PatternSet(
            deny=[str(p) for p in deny] if isinstance(deny, list) else [],
            allow=[str(p) for p in allow] if isinstance(allow, list) else [],
        )
    return None


def union(*groups: Iterable[str]) -> List[str]:
    """Deduplicated union keeping first-seen order"""
    seen: Dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return list(seen)


def merge_pattern_sets(sets: Iterable[PatternSet]) -> PatternSet:
    sets = list(sets)
    return PatternSet(
        deny=union(*(s.deny for s in sets)),
        allow=union(*(s.allow for s in sets)),
    )


def union_popular_packages(documents: Iterable[Any]) -> Dict[str, List[str]]:
    merged: Dict[str, List[str]] = {ecosystem: [] for ecosystem in ECOSYSTEMS}
    for document in documents:
        if not isinstance(document, dict):
            continue
        for ecosystem, names in document.items():
            if isinstance(names, list):
                merged[ecosystem] = union(merged.get(ecosystem, []), [str(n) for n in names])
    return merged


# ============================================================================
# Configuration Management
# ============================================================================

class ConfigManager:
    """Resolves tiered configuration and gateway settings"""

    def __init__(self, project_dir: Optional[Path] = None,
                 defaults_dir: Optional[Path] = None,
                 user_dir: Optional[Path] = None,
                 cache: Optional[PatternCache] = None,
                 settings_path: Optional[Path] = None):
        self.project_dir = Path(project_dir or os.environ.get(PROJECT_DIR_ENV) or os.getcwd())
        self.defaults_dir = Path(defaults_dir or os.environ.get(DEFAULTS_DIR_ENV) or PACKAGE_CONFIG_DIR)
        self.user_dir = Path(user_dir) if user_dir else Path.home() / '.claude'
        self.cache = cache or PatternCache()
        self.settings_path = settings_path or (PACKAGE_CONFIG_DIR / 'gateway.yaml')
        self.settings = self._load_settings()

    # ------------------------------------------------------------------
    # Gateway settings
    # ------------------------------------------------------------------

    def _load_settings(self) -> Dict[str, Any]:
        """Hardcoded defaults <- packaged gateway.yaml <- user gateway.yaml"""
        settings = DEFAULT_SETTINGS
        for path in (self.settings_path, self.user_dir / 'security' / 'gateway.yaml'):
            override = load_document(Path(path))
            if isinstance(override, dict):
                settings = self._deep_merge(settings, override)
        if os.environ.get(DEBUG_ENV, '') in ('1', 'true', 'yes'):
            settings = self._deep_merge(settings, {'system_config': {'debug_mode': True}})
        return settings

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def get(self, key: str, default: Any = None) -> Any:
        """Get a gateway setting"""
        return self.settings.get(key, default)

    def get_system_config(self, option: str, default: Any = None) -> Any:
        """Get system configuration value"""
        return self.settings.get('system_config', {}).get(option, default)

    # ------------------------------------------------------------------
    # Tier locations
    # ------------------------------------------------------------------

    def denylist_tiers(self) -> List[Path]:
        return [
            self.defaults_dir / 'default-denylist',
            self.user_dir / 'security' / 'denylist',
            self.project_dir / '.claude' / 'security' / 'denylist',
        ]

    def popular_package_tiers(self) -> List[Path]:
        return [
            self.defaults_dir / 'default-popular-packages',
            self.user_dir / 'popular-packages',
            self.project_dir / '.claude' / 'popular-packages',
        ]

    def commit_rule_tiers(self) -> List[Path]:
        return [
            self.defaults_dir / 'default-commit-rules',
            self.user_dir / 'commit-rules',
            self.project_dir / '.claude' / 'commit-rules',
        ]

    # ------------------------------------------------------------------
    # Secret path patterns
    # ------------------------------------------------------------------

    def merge_denylist(self) -> PatternSet:
        """Rebuild the secret-path PatternSet from all tiers and cache it"""
        sources = tier_sources(self.denylist_tiers())
        required, *optional = self.denylist_tiers()
        base = as_pattern_set(load_tier(required))
        if base is None:
            raise ConfigurationError(f"Default denylist not found: {required}.json")

        sets = [base]
        for stem in optional:
            tier = as_pattern_set(load_tier(stem))
            if tier is not None:
                sets.append(tier)

        merged = merge_pattern_sets(sets)
        self.cache.write(DENY_CACHE_KEY, merged.deny)
        self.cache.write(ALLOW_CACHE_KEY, merged.allow)
        self.cache.write(DENY_SOURCES_KEY, sources)
        logger.debug("Denylist regenerated: %d deny, %d allow", len(merged.deny), len(merged.allow))
        return merged

    def load_denylist(self) -> PatternSet:
        """Cached secret-path patterns, regenerating on a miss"""
        deny = self.cache.read(DENY_CACHE_KEY)
        allow = self.cache.read(ALLOW_CACHE_KEY)
        fresh = self.cache.read(DENY_SOURCES_KEY) == tier_sources(self.denylist_tiers())
        if fresh and isinstance(deny, list) and isinstance(allow, list):
            return PatternSet(deny=deny, allow=allow)
        return self.merge_denylist()

    # ------------------------------------------------------------------
    # Popular packages
    # ------------------------------------------------------------------

    def merge_popular_packages(self) -> Dict[str, List[str]]:
        sources = tier_sources(self.popular_package_tiers())
        required, *optional = self.popular_package_tiers()
        base = load_tier(required)
        if not isinstance(base, dict):
            raise ConfigurationError(f"Default popular package list not found: {required}.json")

        merged = union_popular_packages([base] + [load_tier(stem) for stem in optional])
        for ecosystem, names in merged.items():
            self.cache.write(POPULAR_CACHE_PREFIX + ecosystem, names)
        self.cache.write(POPULAR_SOURCES_KEY, sources)
        return merged

    def load_popular_packages(self, ecosystem: str) -> List[str]:
        names = self.cache.read(POPULAR_CACHE_PREFIX + ecosystem)
        fresh = self.cache.read(POPULAR_SOURCES_KEY) == tier_sources(self.popular_package_tiers())
        if fresh and isinstance(names, list):
            return names
        return self.merge_popular_packages().get(ecosystem, [])

    # ------------------------------------------------------------------
    # Commit rules
    # ------------------------------------------------------------------

    def load_commit_rules(self) -> Dict[str, Any]:
        """Shallow override: fallback <- defaults <- user <- project"""
        rules = dict(COMMIT_RULES_FALLBACK)
        for stem in self.commit_rule_tiers():
            tier = load_tier(stem)
            if isinstance(tier, dict):
                rules.update(tier)
        return rules

    def regenerate(self):
        """Force regeneration of every cached domain"""
        self.merge_denylist()
        self.merge_popular_packages()
