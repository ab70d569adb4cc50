import stat
import subprocess
import pytest
from gitvault.lib.backends import (
    LocalFileBackend, OnePasswordBackend, BackendError, BackendUnavailableError, SecretNotFoundError,
    locate_record, has_retired_record, password_file, marker_file, retired_file
)
from gitvault.lib.manifest import Entry
from conftest import FakeOp

ENTRY = Entry('f23923ed', 'secrets/api.key')

def test_local_store_resolve(tmp_path):
    backend = LocalFileBackend(tmp_path)
    record = backend.store(ENTRY, 'hunter2')
    path = password_file(tmp_path, ENTRY.id)
    assert path.name == 'git-vault-f23923ed.pw'
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert record.backend == 'file' and record.state == 'active'
    assert backend.resolve(ENTRY.id) == 'hunter2'
    assert locate_record(tmp_path, ENTRY.id).backend == 'file'

def test_local_resolve_uses_first_line(tmp_path):
    password_file(tmp_path, ENTRY.id).write_text('first\nsecond\n')
    assert LocalFileBackend(tmp_path).resolve(ENTRY.id) == 'first'

@pytest.mark.parametrize('content', [None, '', '\n'])
def test_local_resolve_missing_or_empty(tmp_path, content):
    if content is not None:
        password_file(tmp_path, ENTRY.id).write_text(content)
    with pytest.raises(SecretNotFoundError):
        LocalFileBackend(tmp_path).resolve(ENTRY.id)

def test_local_retire_renames(tmp_path):
    backend = LocalFileBackend(tmp_path)
    backend.store(ENTRY, 'pw')
    record = backend.retire(ENTRY.id)
    assert record.state == 'retired'
    assert not password_file(tmp_path, ENTRY.id).exists()
    assert retired_file(tmp_path, ENTRY.id).read_text() == 'pw\n'
    assert locate_record(tmp_path, ENTRY.id) is None
    assert has_retired_record(tmp_path, ENTRY.id)

def test_local_retire_keeps_earlier_retired_file(tmp_path):
    backend = LocalFileBackend(tmp_path)
    retired_file(tmp_path, ENTRY.id).write_text('old\n')
    backend.store(ENTRY, 'new')
    backend.retire(ENTRY.id)
    assert retired_file(tmp_path, ENTRY.id).read_text() == 'old\n'
    assert (tmp_path / 'git-vault-f23923ed.removed.1').read_text() == 'new\n'

def test_local_retire_without_file(tmp_path):
    with pytest.raises(BackendError):
        LocalFileBackend(tmp_path).retire(ENTRY.id)

def test_record_retire_twice():
    from gitvault.lib.backends import PasswordRecord
    record = PasswordRecord(ENTRY.id, 'file').retire()
    with pytest.raises(BackendError):
        record.retire()

def test_op_store_resolve_retire(tmp_path, fake_op):
    backend = OnePasswordBackend(tmp_path, 'myproj', 'Team', runner=fake_op)
    backend.check()
    backend.store(ENTRY, 's3cret')
    title = 'git-vault-myproj-f23923ed'
    assert fake_op.items[title] == {'password': 's3cret', 'path': 'secrets/api.key', 'status': 'active'}
    assert marker_file(tmp_path, ENTRY.id).stat().st_size == 0
    assert locate_record(tmp_path, ENTRY.id).backend == '1password'
    assert backend.resolve(ENTRY.id) == 's3cret'
    assert ['op', 'read', f'op://Team/{title}/password'] in fake_op.calls
    record = backend.retire(ENTRY.id)
    assert record.state == 'retired'
    assert fake_op.items[title]['status'] == 'removed'
    assert not marker_file(tmp_path, ENTRY.id).exists()

def test_op_marker_wins_over_password_file(tmp_path):
    password_file(tmp_path, ENTRY.id).write_text('pw\n')
    marker_file(tmp_path, ENTRY.id).touch()
    assert locate_record(tmp_path, ENTRY.id).backend == '1password'

def test_op_resolve_missing_item(tmp_path, fake_op):
    backend = OnePasswordBackend(tmp_path, 'myproj', runner=fake_op)
    with pytest.raises(SecretNotFoundError):
        backend.resolve(ENTRY.id)

def test_op_signed_out(tmp_path):
    backend = OnePasswordBackend(tmp_path, 'myproj', runner=FakeOp(signed_in=False))
    with pytest.raises(BackendUnavailableError):
        backend.check()
    with pytest.raises(BackendError):
        backend.store(ENTRY, 'pw')
    assert not marker_file(tmp_path, ENTRY.id).exists()

def test_op_cli_missing(tmp_path):
    def runner(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])
    backend = OnePasswordBackend(tmp_path, 'myproj', runner=runner)
    with pytest.raises(BackendUnavailableError, match="'op' not found"):
        backend.check()

def test_op_timeout(tmp_path):
    seen = {}
    def runner(cmd, **kwargs):
        seen.update(kwargs)
        raise subprocess.TimeoutExpired(cmd, kwargs['timeout'])
    backend = OnePasswordBackend(tmp_path, 'myproj', timeout=2, runner=runner)
    with pytest.raises(BackendUnavailableError, match='2s'):
        backend.resolve(ENTRY.id)
    assert seen['timeout'] == 2

def test_op_retire_failure_still_drops_marker(tmp_path, fake_op):
    backend = OnePasswordBackend(tmp_path, 'myproj', runner=fake_op)
    marker_file(tmp_path, ENTRY.id).touch()
    with pytest.raises(BackendError):
        backend.retire(ENTRY.id)
    assert not marker_file(tmp_path, ENTRY.id).exists()
