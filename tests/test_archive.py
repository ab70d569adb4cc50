import pytest
from gitvault.lib.archive import archive_name, encode, decode, verify, ArchiveError
from gitvault.lib.crypto import WrongSecretError, CorruptArchiveError
from conftest import write

@pytest.fixture
def tree(tmp_path):
    root = tmp_path / 'repo'
    write(root / 'secrets' / 'api.key', 'hunter2-token\n')
    write(root / 'conf' / 'db' / 'prod.env', 'DB_PASSWORD=x\n')
    write(root / 'conf' / 'db' / 'nested' / 'deep.txt', 'deep')
    (root / 'conf' / 'db' / 'empty').mkdir()
    return root

def test_archive_name():
    assert archive_name('secrets/api.key') == 'secrets-api.key.tar.gz.enc'
    assert archive_name('conf/db/') == 'conf-db-.tar.gz.enc'

def test_file_round_trip(tree, tmp_path):
    dest = tmp_path / 'store' / archive_name('secrets/api.key')
    encode(tree, 'secrets/api.key', 'hunter2', dest)
    assert b'hunter2-token' not in dest.read_bytes()
    out = tmp_path / 'elsewhere'
    out.mkdir()
    target = decode(dest, 'hunter2', 'secrets/api.key', out)
    assert target == out / 'secrets' / 'api.key'
    assert target.read_text() == 'hunter2-token\n'

def test_directory_round_trip_keeps_name_and_layout(tree, tmp_path):
    dest = tmp_path / 'store' / archive_name('conf/db/')
    encode(tree, 'conf/db/', 'pw', dest)
    out = tmp_path / 'elsewhere'
    out.mkdir()
    decode(dest, 'pw', 'conf/db/', out)
    assert (out / 'conf/db/prod.env').read_text() == 'DB_PASSWORD=x\n'
    assert (out / 'conf/db/nested/deep.txt').read_text() == 'deep'
    assert (out / 'conf/db/empty').is_dir()
    assert sorted(p.name for p in out.iterdir()) == ['conf']

def test_decode_replaces_existing_plaintext(tree, tmp_path):
    dest = tmp_path / archive_name('conf/db/')
    encode(tree, 'conf/db/', 'pw', dest)
    write(tree / 'conf/db/stale.txt', 'stale')
    (tree / 'conf/db/prod.env').write_text('changed')
    decode(dest, 'pw', 'conf/db/', tree)
    assert not (tree / 'conf/db/stale.txt').exists()
    assert (tree / 'conf/db/prod.env').read_text() == 'DB_PASSWORD=x\n'
    assert not list(tree.glob('.git-vault-extract-*'))

def test_decode_type_change_file_to_directory(tree, tmp_path):
    dest = tmp_path / archive_name('conf/db/')
    encode(tree, 'conf/db/', 'pw', dest)
    import shutil
    shutil.rmtree(tree / 'conf/db')
    write(tree / 'conf/db', 'now a file')
    decode(dest, 'pw', 'conf/db/', tree)
    assert (tree / 'conf/db').is_dir()

def test_wrong_secret_leaves_plaintext_untouched(tree, tmp_path):
    dest = tmp_path / archive_name('secrets/api.key')
    encode(tree, 'secrets/api.key', 'right', dest)
    (tree / 'secrets/api.key').write_text('local edit')
    with pytest.raises(WrongSecretError):
        decode(dest, 'wrong', 'secrets/api.key', tree)
    assert (tree / 'secrets/api.key').read_text() == 'local edit'
    assert not list(tree.glob('.git-vault-extract-*'))

def test_corrupt_archive_leaves_plaintext_untouched(tree, tmp_path):
    dest = tmp_path / archive_name('secrets/api.key')
    encode(tree, 'secrets/api.key', 'pw', dest)
    data = bytearray(dest.read_bytes())
    data[-1] ^= 0x01
    dest.write_bytes(bytes(data))
    with pytest.raises(CorruptArchiveError):
        decode(dest, 'pw', 'secrets/api.key', tree)
    assert (tree / 'secrets/api.key').read_text() == 'hunter2-token\n'

def test_archive_for_other_path_rejected(tree, tmp_path):
    dest = tmp_path / archive_name('secrets/api.key')
    encode(tree, 'secrets/api.key', 'pw', dest)
    with pytest.raises(CorruptArchiveError):
        verify(dest, 'pw', 'conf/db/')

def test_verify_counts_members(tree, tmp_path):
    dest = tmp_path / archive_name('conf/db/')
    encode(tree, 'conf/db/', 'pw', dest)
    # conf/db, empty, nested, nested/deep.txt, prod.env
    assert verify(dest, 'pw', 'conf/db/') == 5
    with pytest.raises(WrongSecretError):
        verify(dest, 'nope', 'conf/db/')

def test_encode_missing_path(tree, tmp_path):
    with pytest.raises(ArchiveError):
        encode(tree, 'missing.txt', 'pw', tmp_path / 'x.tar.gz.enc')

def test_failed_encode_keeps_previous_archive(tree, tmp_path):
    dest = tmp_path / archive_name('secrets/api.key')
    encode(tree, 'secrets/api.key', 'pw', dest)
    before = dest.read_bytes()
    with pytest.raises(Exception):
        encode(tree, 'secrets/api.key', '', dest)
    assert dest.read_bytes() == before
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith('.tmp')] == []
