"""
Shared invocation adapter.

Reads one hook invocation (a JSON object) from stdin, evaluates exactly one
policy module and translates its Decision into the hook exit protocol:

    0 = allow the tool call (warnings, if any, on stderr)
    2 = block the tool call (stderr = reason shown to the agent)

A missing, oversized or malformed invocation is allowed: it is not evidence
of an attack, and blocking blind is worse than skipping one check.
"""

import json
import logging
import os
import sys
from typing import Any, BinaryIO, Optional, TextIO, Type

from .config import PROJECT_DIR_ENV, ConfigManager
from .eventlog import DecisionLog
from .logging_utils import configure_logging
from .models import Decision, Invocation, Verdict
from .policy import PolicyModule

logger = logging.getLogger(__name__)

MAX_STDIN = 1024 * 1024  # 1 MiB

EXIT_ALLOW = 0
EXIT_BLOCK = 2

TARGET_KEYS = ('command', 'file_path', 'notebook_path', 'pattern', 'path')


def parse_invocation(data: bytes) -> Optional[Invocation]:
    """Typed view of a raw invocation; None if it is not usable"""
    if not data or not data.strip():
        return None
    try:
        record = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        logger.debug("Failed to parse invocation JSON: %s", e)
        return None
    if not isinstance(record, dict):
        return None

    action_kind = record.get('tool_name') or record.get('action_kind') or ''
    payload = record.get('tool_input')
    if payload is None:
        payload = record.get('payload')
    if not isinstance(action_kind, str) or not isinstance(payload, (dict, type(None))):
        return None
    payload = payload or {}

    target = ''
    for key in TARGET_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            target = value
            break

    cwd = record.get('cwd') if isinstance(record.get('cwd'), str) else None
    return Invocation(
        action_kind=action_kind,
        target=target,
        payload=payload,
        raw=record,
        cwd=cwd or os.environ.get(PROJECT_DIR_ENV) or None,
    )


def read_invocation(stream: Optional[BinaryIO] = None, max_bytes: int = MAX_STDIN) -> Optional[Invocation]:
    """Read and parse one invocation, capped at `max_bytes`"""
    if stream is None:
        stream = sys.stdin.buffer
    data = stream.read(max_bytes + 1)
    if len(data) > max_bytes:
        logger.debug("Invocation exceeds %d bytes, skipping checks", max_bytes)
        return None
    return parse_invocation(data)


def render_decision(decision: Decision, stderr: TextIO) -> int:
    """Decision -> exit status, writing any message to the diagnostic stream"""
    if decision.message:
        stderr.write(decision.message.rstrip('\n') + '\n')
    if decision.verdict is Verdict.BLOCK:
        return EXIT_BLOCK
    return EXIT_ALLOW


def run_policy(policy_class: Type[PolicyModule],
               stdin: Optional[BinaryIO] = None,
               stderr: Optional[TextIO] = None,
               config: Optional[ConfigManager] = None,
               **policy_kwargs: Any) -> int:
    """Evaluate one policy for the invocation on stdin and return the exit status"""
    stderr = stderr or sys.stderr
    invocation = read_invocation(stdin)
    if invocation is None:
        return EXIT_ALLOW

    try:
        config = config or ConfigManager(project_dir=invocation.cwd)
        configure_logging(config.get_system_config('debug_mode', False), stderr)
        logger.debug("Tool: %s, target: %s", invocation.action_kind, invocation.target)

        policy = policy_class(config, **policy_kwargs)
        decision = policy.evaluate(invocation)
    except Exception as e:
        logger.debug("Unexpected error in %s", policy_class.name, exc_info=True)
        if policy_class.fail_closed:
            decision = Decision.block(f"[{policy_class.name}] ERROR: {e} - blocking as a safety measure.")
        else:
            decision = Decision.allow()
    else:
        DecisionLog(config).log_decision(policy_class.name, invocation, decision)

    return render_decision(decision, stderr)

