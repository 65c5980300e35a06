"""
Best-effort shell command tokenizer.

Splits a raw command string into simple commands (dequoted argv plus
redirect targets) so the policy modules never have to regex their way
through quoting. Parsing is done with bashlex; anything bashlex rejects
falls back to a quote-aware shlex split and finally to whitespace.
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Iterable, List

import bashlex

logger = logging.getLogger(__name__)

# Tokens that end one simple command in the shlex fallback
CONTROL_OPERATORS = {';', ';;', '&', '&&', '|', '||', '|&', '(', ')', '\n'}

REDIRECT_OPERATORS = {'<', '>', '>>', '>|', '<>', '&>', '&>>', '<<<'}

DEFAULT_WRAPPERS = {
    'timeout', 'time', 'nice', 'nohup', 'strace', 'ltrace',
    'env', 'watch', 'xargs', 'parallel', 'caffeinate', 'unbuffer',
    'sudo', 'command', 'exec',
}

# Wrapper options whose value is the next word (`sudo -u root cat x`)
WRAPPER_VALUE_OPTIONS = {
    'sudo': {'-u', '-g', '-C', '-D', '-h', '-p', '-r', '-t', '-U',
             '--user', '--group', '--chdir', '--host', '--prompt'},
    'timeout': {'-s', '-k', '--signal', '--kill-after'},
    'nice': {'-n', '--adjustment'},
    'env': {'-u', '-C', '--unset', '--chdir'},
    'xargs': {'-I', '-n', '-P', '-L', '-d', '-E', '-s', '-a',
              '--max-args', '--max-procs', '--delimiter', '--arg-file'},
    'parallel': {'-j', '-S', '--jobs'},
    'watch': {'-n', '--interval'},
    'strace': {'-o', '-e', '-p', '-s', '-u'},
    'ltrace': {'-o', '-e', '-p', '-s', '-u'},
}


@dataclass
class SimpleCommand:
    """One command of a pipeline or list"""
    words: List[str] = field(default_factory=list)
    redirects: List[str] = field(default_factory=list)


# ============================================================================
# Splitting
# ============================================================================

def split_commands(command: str) -> List[SimpleCommand]:
    """Split a command string into simple commands. Never raises."""
    if not command or not command.strip():
        return []

    try:
        trees = bashlex.parse(command)
    except Exception as e:
        logger.debug("bashlex could not parse command (%s), using shlex fallback", e)
        return _split_with_shlex(command)

    commands: List[SimpleCommand] = []
    _walk(trees, commands)
    return commands


def _walk(nodes: Any, commands: List[SimpleCommand]):
    """Collect command nodes, descending into substitutions"""
    if isinstance(nodes, list):
        for node in nodes:
            _walk(node, commands)
        return
    if not hasattr(nodes, 'kind'):
        return

    if nodes.kind == 'command':
        current = SimpleCommand()
        commands.append(current)
        for part in getattr(nodes, 'parts', []):
            if part.kind == 'word':
                current.words.append(part.word)
                _walk(getattr(part, 'parts', []), commands)
            elif part.kind == 'redirect':
                output = getattr(part, 'output', None)
                if hasattr(output, 'word'):
                    current.redirects.append(output.word)
                    _walk(getattr(output, 'parts', []), commands)
        return

    if nodes.kind in ('commandsubstitution', 'processsubstitution'):
        _walk(getattr(nodes, 'command', None), commands)
        return

    if hasattr(nodes, 'parts'):
        _walk(nodes.parts, commands)
    if hasattr(nodes, 'list'):
        _walk(nodes.list, commands)


def _split_with_shlex(command: str) -> List[SimpleCommand]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        tokens = list(lexer)
    except ValueError:
        # Unbalanced quotes: plain whitespace split, still one command per line
        tokens = command.split()

    commands: List[SimpleCommand] = []
    current = SimpleCommand()
    redirect_pending = False
    for token in tokens:
        if token in CONTROL_OPERATORS:
            if current.words or current.redirects:
                commands.append(current)
            current = SimpleCommand()
            redirect_pending = False
            continue
        if token in REDIRECT_OPERATORS or token.startswith(('>', '<')):
            target = token.lstrip('<>&|')
            if target:
                current.redirects.append(target)
            else:
                redirect_pending = True
            continue
        if redirect_pending:
            current.redirects.append(token)
            redirect_pending = False
            continue
        current.words.append(token)

    if current.words or current.redirects:
        commands.append(current)
    return commands


# ============================================================================
# Helpers
# ============================================================================

def basename(word: str) -> str:
    """Basename of a command word (`/usr/bin/git` -> `git`)"""
    return PurePosixPath(word).name if '/' in word else word


def strip_wrappers(words: List[str], wrappers: Iterable[str] = DEFAULT_WRAPPERS) -> List[str]:
    """Drop leading wrapper commands and their options (`timeout 5 cat x` -> `cat x`)"""
    wrappers = set(wrappers)
    index = 0
    while index < len(words) and basename(words[index]) in wrappers:
        value_options = WRAPPER_VALUE_OPTIONS.get(basename(words[index]), set())
        index += 1
        # Options, durations and env assignments belong to the wrapper
        while index < len(words) and (
            words[index].startswith('-')
            or '=' in words[index]
            or words[index].replace('.', '', 1).rstrip('smhd').isdigit()
        ):
            if words[index] in value_options:
                index += 1
            index += 1
    return words[index:]


def find_subcommand(words: List[str], program: str, verbs: Iterable[str]) -> int:
    """Index just past `program <verb>`, or -1.

    Options between the program and the verb are skipped, including the
    value of the common value-taking git options (`git -C dir commit`).
    """
    verbs = set(verbs)
    for index, word in enumerate(words):
        if basename(word) != program:
            continue
        position = index + 1
        while position < len(words) and words[position].startswith('-'):
            if words[position] in ('-C', '-c') and position + 1 < len(words):
                position += 1
            position += 1
        if position < len(words) and words[position] in verbs:
            return position + 1
    return -1


def program(command: SimpleCommand, wrappers: Iterable[str] = DEFAULT_WRAPPERS) -> str:
    """Basename of the real program a simple command runs, wrappers skipped"""
    words = strip_wrappers(command.words, wrappers)
    return basename(words[0]) if words else ''
