import pytest

from claude_code_security_gateway.exemptions import ExemptionStore
from claude_code_security_gateway.models import Invocation, PatternSet, Verdict
from claude_code_security_gateway.paths import (
    ProtectSecretsPolicy,
    check_path,
    extract_bash_paths,
    is_exemption_command,
    matches_glob,
)


@pytest.mark.parametrize('name,pattern,expected', [
    ('.env', '.env', True),
    ('.env.example', '.env', False),
    ('.env.local', '.env.*', True),
    ('server.pem', '*.pem', True),
    ('server.pem.bak', '*.pem', False),
    ('id_rsa', 'id_rsa*', True),
    ('a.b', 'a?b', True),
    ('aXb', 'a.b', False),
    ('[ab]', '[ab]', True),
    ('a', '[ab]', False),
    ('x+y', 'x+y', True),
    ('xxy', 'x+y', False),
    ('secrets.yaml', 'secrets.y?ml', True),
])
def test_glob_semantics(name, pattern, expected):
    assert matches_glob(name, pattern) is expected


PATTERNS = PatternSet(deny=['.env', '.env.*', '*.pem'], allow=['.env.example'])


@pytest.mark.parametrize('path,exemptions,denied', [
    ('/app/.env', set(), True),
    ('/app/.env.example', set(), False),
    ('/app/.env.local', set(), True),
    ('/app/.env.local', {'/app/.env.local'}, False),
    ('/app/.env.local', {'.env.local'}, False),
    ('/app/.env.local', {'/other/.env.local'}, True),
    ('/app/config/', set(), False),
    ('', set(), False),
])
def test_check_path_precedence(path, exemptions, denied):
    assert check_path(path, PATTERNS, exemptions).denied is denied


def test_allow_beats_exemption_and_deny():
    patterns = PatternSet(deny=['*.pub'], allow=['*.pub'])
    match = check_path('id_rsa.pub', patterns, set())
    assert not match.denied


FILE_COMMANDS = ['cat', 'grep', 'cp', 'source']
PATTERN_COMMANDS = ['grep']
WRAPPERS = ['timeout', 'sudo']


@pytest.mark.parametrize('command,expected', [
    ('cat a.txt b.txt', ['a.txt', 'b.txt']),
    ('cat -n a.txt', ['a.txt']),
    ('grep token config.ini', ['config.ini']),
    ('grep -e token config.ini', ['token', 'config.ini']),
    ('ls > listing.txt', ['listing.txt']),
    ('timeout 3 cat .env', ['.env']),
    ('sudo -u root cat .env', ['.env']),
    ('sudo --login-class staff cat .env', ['.env']),
    ('sudo systemctl status', []),
    ('python script.py', []),
    ('echo x && source .env', ['.env']),
])
def test_extract_bash_paths(command, expected):
    assert extract_bash_paths(command, FILE_COMMANDS, PATTERN_COMMANDS, WRAPPERS) == expected


@pytest.mark.parametrize('command,expected', [
    ('claude-security-gateway exempt-secret .env', True),
    ('claude-security-gateway exempt-secret /app/.env config/app.pem', True),
    ('claude-security-gateway exempt-secret', False),
    ('claude-security-gateway exempt-secret .env && cat .env', False),
    ('claude-security-gateway exempt-secret "$(cat .env)"', False),
    ('claude-security-gateway merge-denylist', False),
])
def test_is_exemption_command(command, expected):
    assert is_exemption_command(command) is expected


def read(path):
    return Invocation(action_kind='Read', target=path, payload={'file_path': path})


def test_session_exemption_allows_until_cleared(gateway_env):
    config = gateway_env.config()
    store = ExemptionStore(gateway_env.cache)
    policy = ProtectSecretsPolicy(config, exemptions=store)

    assert policy.evaluate(read('/app/.env')).verdict is Verdict.BLOCK

    store.add(['/app/.env'])
    assert policy.evaluate(read('/app/.env')).verdict is Verdict.ALLOW
    assert policy.evaluate(read('/other/.env')).verdict is Verdict.BLOCK

    store.clear()
    assert policy.evaluate(read('/app/.env')).verdict is Verdict.BLOCK


def test_block_message_names_pattern_and_exemption_command(gateway_env):
    policy = ProtectSecretsPolicy(gateway_env.config())
    decision = policy.evaluate(read('/app/my keys/server.pem'))
    assert decision.verdict is Verdict.BLOCK
    assert "Secret file access blocked: server.pem" in decision.message
    assert "'*.pem'" in decision.message
    assert "claude-security-gateway exempt-secret '/app/my keys/server.pem'" in decision.message


def test_missing_default_denylist_blocks(gateway_env, tmp_path):
    empty = tmp_path / 'defaults'
    empty.mkdir()
    policy = ProtectSecretsPolicy(gateway_env.config(defaults_dir=empty))
    decision = policy.evaluate(read('README.md'))
    assert decision.verdict is Verdict.BLOCK
    assert "Secret protection cache unavailable" in decision.message
    assert "Default denylist not found" in decision.message
