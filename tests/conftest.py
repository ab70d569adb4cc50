import shutil
import subprocess
from pathlib import Path

import pytest

from gitvault.lib.install import install
from gitvault.lib.vault import Vault, VaultConfig

requires_git = pytest.mark.skipif(shutil.which('git') is None, reason='git executable not available')


def git(root: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(['git', *args], cwd=root, capture_output=True, text=True, check=True)


class FakeOp:
    """Stand-in for the 1Password `op` CLI, keeping items in memory."""

    def __init__(self, signed_in=True):
        self.signed_in = signed_in
        self.items = {}
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        args = cmd[1:]
        if args[0] == 'whoami':
            return self._done(0 if self.signed_in else 1, err='not signed in')
        if not self.signed_in:
            return self._done(1, err='not signed in')
        if args[:2] == ['item', 'create']:
            title = args[args.index('--title') + 1]
            self.items[title] = dict(a.split('=', 1) for a in args[2:] if '=' in a and not a.startswith('-'))
            return self._done(0)
        if args[0] == 'read':
            _, _, _vault, title, field = args[1].split('/')
            if title not in self.items:
                return self._done(1, err=f'"{title}" isn\'t an item')
            return self._done(0, out=self.items[title].get(field, '') + '\n')
        if args[:2] == ['item', 'edit']:
            title = args[2]
            if title not in self.items:
                return self._done(1, err='not found')
            self.items[title].update(a.split('=', 1) for a in args[3:] if '=' in a and not a.startswith('-'))
            return self._done(0)
        return self._done(1, err='unsupported')

    def _done(self, code, out='', err=''):
        return subprocess.CompletedProcess(['op'], code, stdout=out, stderr=err)


@pytest.fixture
def fake_op():
    return FakeOp()


@pytest.fixture
def repo(tmp_path, monkeypatch):
    if shutil.which('git') is None:
        pytest.skip('git executable not available')
    root = tmp_path / 'project'
    root.mkdir()
    git(root, 'init', '-q')
    git(root, 'config', 'user.email', 'dev@example.com')
    git(root, 'config', 'user.name', 'Dev')
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def vault(repo):
    install(repo, VaultConfig())
    return Vault(repo)


@pytest.fixture
def op_vault(repo, fake_op):
    config = VaultConfig(storage_mode='1password')
    install(repo, config, op_runner=fake_op)
    return Vault(repo, op_runner=fake_op)


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path
