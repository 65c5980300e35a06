import io
import json
from dataclasses import dataclass
from pathlib import Path

import pytest

from claude_code_security_gateway.cache import CACHE_DIR_ENV, PatternCache
from claude_code_security_gateway.config import (
    DEBUG_ENV,
    DEFAULTS_DIR_ENV,
    PROJECT_DIR_ENV,
    ConfigManager,
)
from claude_code_security_gateway.invocation import run_policy


@dataclass
class GatewayEnv:
    home: Path
    project: Path
    cache: Path

    @property
    def user_dir(self) -> Path:
        return self.home / '.claude'

    def config(self, **kwargs) -> ConfigManager:
        kwargs.setdefault('project_dir', self.project)
        kwargs.setdefault('user_dir', self.user_dir)
        kwargs.setdefault('cache', PatternCache(self.cache))
        return ConfigManager(**kwargs)


@pytest.fixture
def gateway_env(tmp_path, monkeypatch):
    """HOME, project and cache directories isolated under tmp_path"""
    env = GatewayEnv(
        home=tmp_path / 'home',
        project=tmp_path / 'project',
        cache=tmp_path / 'cache',
    )
    env.home.mkdir()
    env.project.mkdir()
    monkeypatch.setenv('HOME', str(env.home))
    monkeypatch.setenv(CACHE_DIR_ENV, str(env.cache))
    monkeypatch.setenv(PROJECT_DIR_ENV, str(env.project))
    monkeypatch.delenv(DEFAULTS_DIR_ENV, raising=False)
    monkeypatch.delenv(DEBUG_ENV, raising=False)
    return env


def invocation_bytes(tool_name, tool_input, **extra) -> bytes:
    record = {'tool_name': tool_name, 'tool_input': tool_input}
    record.update(extra)
    return json.dumps(record).encode('utf-8')


@pytest.fixture
def run_hook(gateway_env):
    """Run one policy end to end; returns (exit status, stderr text)"""
    def run(policy_class, tool_name, tool_input, **policy_kwargs):
        stdin = io.BytesIO(invocation_bytes(tool_name, tool_input, cwd=str(gateway_env.project)))
        stderr = io.StringIO()
        status = run_policy(policy_class, stdin=stdin, stderr=stderr, **policy_kwargs)
        return status, stderr.getvalue()
    return run
