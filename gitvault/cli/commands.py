"""CLI commands implemented with click.

Operator commands: install, add, remove, list.
Hook commands (invoked by git): encrypt, decrypt.
"""
from __future__ import annotations
import logging, click
from config.settings import LOG_LEVEL, STORAGE_MODES, DEFAULT_LFS_THRESHOLD_MB, DEFAULT_OP_VAULT
from gitvault.lib.archive import ArchiveError
from gitvault.lib.auth import AuthError, advise_strength, confirm_secret
from gitvault.lib.backends import BackendError, password_file
from gitvault.lib.crypto import CryptoError, WrongSecretError
from gitvault.lib.hooks import run_decrypt, run_encrypt
from gitvault.lib.install import install as install_vault
from gitvault.lib.lifecycle import EntryError, add_path, remove_path
from gitvault.lib.manifest import ManifestError
from gitvault.lib.vault import ConfigError, Vault, VaultConfig
from gitvault.lib.vcs import GitError, find_toplevel

OPERATOR_ERRORS = (AuthError, EntryError, ConfigError, BackendError, CryptoError, ArchiveError, ManifestError, GitError)

def _fail(e):
	click.echo(f'Error: {e}', err=True)
	raise SystemExit(1)

@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Log debug output.')
def cli(verbose):
	"""git-vault: keep selected paths in git only in encrypted form."""
	level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL.upper(), logging.INFO)
	logging.basicConfig(level=level, format='git-vault %(levelname)s: %(message)s')

@cli.command()
@click.option('--storage', type=click.Choice(STORAGE_MODES), default='file', show_default=True, help='Where new passwords are kept.')
@click.option('--op-vault', default=DEFAULT_OP_VAULT, show_default=True, help='1Password vault for the 1password storage mode.')
@click.option('--lfs-threshold', type=click.IntRange(min=0), default=DEFAULT_LFS_THRESHOLD_MB, show_default=True, help='Archive size (MB) from which Git LFS is used.')
@click.option('--force', is_flag=True, help='Overwrite existing hooks not written by git-vault.')
def install(storage, op_vault, lfs_threshold, force):
	"""Set up git-vault and its hooks in the current repository."""
	root = find_toplevel()
	if root is None:
		_fail(ConfigError('Not inside a git repository'))
	try:
		res = install_vault(root, VaultConfig(storage_mode=storage, lfs_threshold_mb=lfs_threshold, op_vault=op_vault), force=force)
	except OPERATOR_ERRORS as e:
		_fail(e)
	for hook in res.hooks:
		click.echo(f'Installed hook {hook}')
	for hook in res.skipped_hooks:
		click.echo(f'Kept existing hook {hook}')
	click.echo(f'git-vault ready in {res.vault.root} ({storage} storage).')

@cli.command()
@click.argument('path', type=click.Path())
@click.option('--password', prompt='Enter encryption password', hide_input=True)
@click.option('--confirm-password', prompt='Confirm password', hide_input=True)
@click.option('--storage', type=click.Choice(STORAGE_MODES), default=None, help='Override the configured storage mode for this path.')
@click.option('--force', is_flag=True, help='Add again a path that was vaulted and removed before.')
def add(path, password, confirm_password, storage, force):
	"""Vault a file or directory."""
	try:
		secret = confirm_secret(password, confirm_password)
		advise_strength(secret)
		vault = Vault.discover()
		res = add_path(vault, path, secret, backend=storage, force=force)
	except OPERATOR_ERRORS as e:
		_fail(e)
	if res.entry.backend == 'file':
		click.echo(f'Password saved in: {password_file(vault.vault_dir, res.entry.id)}')
	else:
		click.echo('Password stored in 1Password.')
	click.echo(f'Archive stored in: {res.archive}')
	if res.storage == 'external':
		click.echo('Archive routed through Git LFS.')
	click.echo(f"Success: '{res.entry.path}' is now managed by git-vault.")

@cli.command()
@click.argument('path', type=click.Path())
@click.option('--prune-ignore/--keep-ignore', default=None, help='Drop the ignore rule for PATH without asking.')
def remove(path, prune_ignore):
	"""Stop vaulting PATH (the plaintext stays where it is)."""
	def ask(rule):
		if prune_ignore is not None:
			return prune_ignore
		return click.confirm(f"Remove '{rule}' from .gitignore?", default=False)
	try:
		res = remove_path(Vault.discover(), path, prune_ignore=ask)
	except WrongSecretError as e:
		_fail(f'Password verification failed, nothing was removed: {e}')
	except OPERATOR_ERRORS as e:
		_fail(e)
	click.echo(f"Success: '{res.entry.path}' has been unmanaged from git-vault.")
	if res.record is None:
		click.echo('Warning: the password record could not be retired.')
	elif res.record.backend == 'file':
		click.echo('The password file was renamed for potential recovery.')
	else:
		click.echo("The password item in 1Password was marked as 'removed' but not deleted.")
	click.echo(f"The plaintext '{res.entry.path}' remains in your working directory.")

@cli.command('list')
def list_entries():
	"""Show vaulted paths."""
	try:
		vault = Vault.discover()
		entries = vault.entries()
	except OPERATOR_ERRORS as e:
		_fail(e)
	if not entries:
		click.echo('No paths are managed by git-vault.')
		return
	for e in entries:
		flag = '' if vault.archive_path(e.path).is_file() else ' (archive missing)'
		click.echo(f"{e.id}  {e.path}  [{e.backend or 'no password'}]{flag}")

@cli.command()
def encrypt():
	"""pre-commit hook: re-encrypt staged vaulted paths."""
	try:
		vault = Vault.discover()
	except ConfigError as e:
		_fail(e)
	raise SystemExit(run_encrypt(vault).exit_code)

@cli.command()
def decrypt():
	"""post-checkout / post-merge hook: restore plaintext from archives."""
	try:
		vault = Vault.discover()
	except ConfigError as e:
		# Never block a checkout.
		logging.getLogger(__name__).error('%s', e)
		return
	run_decrypt(vault)
