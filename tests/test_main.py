from click.testing import CliRunner
from gitvault.cli.commands import cli
from gitvault.lib.install import install, hook_script, HOOK_TAG
from gitvault.lib.vault import VaultConfig

def test_cli_help():
	r = CliRunner().invoke(cli, ['--help'])
	assert r.exit_code == 0
	for command in ('install', 'add', 'remove', 'list', 'encrypt', 'decrypt'):
		assert command in r.output


def test_hook_scripts():
	pre = hook_script('encrypt')
	post = hook_script('decrypt')
	assert pre.startswith('#!/bin/sh') and HOOK_TAG in pre
	assert '-m gitvault.main encrypt' in pre and 'exit 1' in pre
	# A broken decrypt hook must not fail the checkout.
	assert '-m gitvault.main decrypt' in post and 'exit 0' in post


def test_install_layout(repo):
	res = install(repo, VaultConfig(lfs_threshold_mb=7))
	vault_dir = repo / '.git-vault'
	assert (vault_dir / 'storage').is_dir()
	assert (vault_dir / 'paths.list').read_text().startswith('#')
	assert (vault_dir / 'lfs-config').read_text().strip() == '7'
	hooks = sorted(h.name for h in res.hooks)
	assert hooks == ['post-checkout', 'post-merge', 'pre-commit']
	for hook in res.hooks:
		assert hook.stat().st_mode & 0o111
	assert '.git-vault/git-vault-*.pw' in (repo / '.gitignore').read_text().splitlines()
	# Re-running is harmless.
	again = install(repo, VaultConfig(lfs_threshold_mb=7))
	assert len(again.hooks) == 3
	assert (repo / '.gitignore').read_text().count('.git-vault/git-vault-*.pw\n') == 1


def test_install_keeps_foreign_hooks(repo):
	hook = repo / '.git' / 'hooks' / 'pre-commit'
	hook.parent.mkdir(parents=True, exist_ok=True)
	hook.write_text('#!/bin/sh\necho mine\n')
	res = install(repo, VaultConfig())
	assert res.skipped_hooks == [hook]
	assert hook.read_text() == '#!/bin/sh\necho mine\n'
	forced = install(repo, VaultConfig(), force=True)
	assert hook in forced.hooks and HOOK_TAG in hook.read_text()


def test_install_onepassword_requires_sign_in(repo, fake_op):
	import pytest
	from gitvault.lib.backends import BackendUnavailableError
	fake_op.signed_in = False
	with pytest.raises(BackendUnavailableError):
		install(repo, VaultConfig(storage_mode='1password'), op_runner=fake_op)
	assert not (repo / '.git-vault' / 'storage-mode').exists()


def test_config_roundtrip_and_bad_values(tmp_path):
	import pytest
	from gitvault.lib.vault import ConfigError
	VaultConfig(storage_mode='1password', lfs_threshold_mb=3, op_vault='Team').save(tmp_path)
	cfg = VaultConfig.load(tmp_path)
	assert (cfg.storage_mode, cfg.lfs_threshold_mb, cfg.op_vault) == ('1password', 3, 'Team')
	(tmp_path / 'lfs-config').write_text('lots\n')
	assert VaultConfig.load(tmp_path).lfs_threshold_mb == 5
	(tmp_path / 'storage-mode').write_text('vault\n')
	with pytest.raises(ConfigError):
		VaultConfig.load(tmp_path)
