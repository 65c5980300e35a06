"""
Command line entry point: `claude-security-gateway <subcommand>`.

Hook subcommands read one invocation from stdin and exit 0 (allow) or
2 (block). The remaining subcommands manage the session state the hooks
read: the pattern cache and the exemption store.
"""

import argparse
import json
import sys
from typing import List, Optional

from .commit_lint import CommitMessagePolicy
from .config import ConfigManager
from .credentials import ProtectCredentialsPolicy
from .eventlog import DecisionLog
from .exemptions import ExemptionStore
from .invocation import EXIT_ALLOW, read_invocation, run_policy
from .logging_utils import configure_logging
from .models import ConfigurationError
from .paths import ProtectSecretsPolicy
from .typosquat import TyposquatPolicy

HOOKS = {
    'protect-secrets': ProtectSecretsPolicy,
    'protect-credentials': ProtectCredentialsPolicy,
    'check-typosquat': TyposquatPolicy,
    'lint-commit-message': CommitMessagePolicy,
}

COMPACTION_MESSAGE = (
    "[context-usage-alert] Context window full - auto-compaction starting. "
    "Use /handoff before your next large task to preserve full context."
)
COMPACTION_CONTEXT = (
    "IMPORTANT: Context was just auto-compacted. Key context may have been lost. "
    "Consider suggesting /handoff to the user if they have complex ongoing work, "
    "so they can preserve context for a fresh session."
)


def cmd_hook(args: argparse.Namespace) -> int:
    return run_policy(HOOKS[args.command])


def cmd_exempt_secret(args: argparse.Namespace) -> int:
    config = ConfigManager()
    store = ExemptionStore(config.cache.directory)
    written = store.add(args.paths)
    for path in args.paths:
        print(f"Exempted for this session: {path}")
    return 0 if written else 1


def cmd_merge_denylist(args: argparse.Namespace) -> int:
    config = ConfigManager()
    try:
        merged = config.merge_denylist()
    except ConfigurationError as e:
        sys.stderr.write(f"[protect-secrets] ERROR: {e}\n")
        return 1
    print(json.dumps({'deny': merged.deny, 'allow': merged.allow}, indent=2))
    return 0


def cmd_session_start(args: argparse.Namespace) -> int:
    config = ConfigManager()
    ExemptionStore(config.cache.directory).clear()
    try:
        config.regenerate()
    except ConfigurationError as e:
        sys.stderr.write(f"[security-gateway] ERROR: {e}\n")
        return 1
    return 0


def cmd_context_alert(args: argparse.Namespace) -> int:
    """PreCompact hook: cannot block, only informs"""
    invocation = read_invocation()
    if invocation is None or invocation.raw.get('trigger') != 'auto':
        return EXIT_ALLOW

    config = ConfigManager(project_dir=invocation.cwd)
    DecisionLog(config).append({
        'event': 'auto-compaction',
        'session': invocation.raw.get('session_id', 'unknown'),
    })
    sys.stdout.write(json.dumps({
        'systemMessage': COMPACTION_MESSAGE,
        'hookSpecificOutput': {
            'hookEventName': 'PreCompact',
            'additionalContext': COMPACTION_CONTEXT,
        },
    }))
    return EXIT_ALLOW


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='claude-security-gateway',
        description='Security hooks for AI coding agent tool calls',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    for name, policy in HOOKS.items():
        hook = sub.add_parser(name, help=(policy.__doc__ or '').strip())
        hook.set_defaults(func=cmd_hook)

    exempt = sub.add_parser('exempt-secret', help='Allow protected paths for the rest of this session')
    exempt.add_argument('paths', nargs='+', help='Full path or basename to exempt')
    exempt.set_defaults(func=cmd_exempt_secret)

    merge = sub.add_parser('merge-denylist', help='Regenerate the secret-path cache and print it')
    merge.set_defaults(func=cmd_merge_denylist)

    start = sub.add_parser('session-start', help='Regenerate caches and clear session exemptions')
    start.set_defaults(func=cmd_session_start)

    alert = sub.add_parser('context-alert', help='PreCompact hook reminding about /handoff')
    alert.set_defaults(func=cmd_context_alert)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
