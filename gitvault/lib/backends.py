"""Password backends: where the secret for one vaulted entry lives.

Two variants share the store/resolve/retire capability set:

- ``LocalFileBackend`` keeps the secret in `git-vault-<id>.pw` (mode 0600)
  inside the vault directory; retiring renames it to `git-vault-<id>.removed`.
- ``OnePasswordBackend`` keeps the secret in a 1Password item named
  `git-vault-<project>-<id>` and leaves a zero-byte `git-vault-<id>.pw.1p`
  marker locally; retiring flips the item's `status` field to `removed`.

Which backend an entry uses is recorded by its own artifacts, see
``locate_record``. A missing record is not an error here; callers decide.
"""
from __future__ import annotations
import logging, os, subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from config.settings import (
	PASSWORD_PREFIX, PASSWORD_SUFFIX, MARKER_SUFFIX, RETIRED_SUFFIX,
	DEFAULT_OP_VAULT, OP_ITEM_PREFIX, OP_TIMEOUT
)
from .manifest import Entry

log = logging.getLogger(__name__)

FILE = 'file'
ONEPASSWORD = '1password'

class BackendError(Exception): ...

class BackendUnavailableError(BackendError):
	"""The backend cannot be reached at all (CLI missing, signed out, timed out)."""

class SecretNotFoundError(BackendError):
	"""The backend is reachable but holds no usable secret for the id."""

def password_file(vault_dir: Path, entry_id: str) -> Path:
	return vault_dir / f"{PASSWORD_PREFIX}{entry_id}{PASSWORD_SUFFIX}"

def marker_file(vault_dir: Path, entry_id: str) -> Path:
	return vault_dir / f"{PASSWORD_PREFIX}{entry_id}{MARKER_SUFFIX}"

def retired_file(vault_dir: Path, entry_id: str) -> Path:
	return vault_dir / f"{PASSWORD_PREFIX}{entry_id}{RETIRED_SUFFIX}"

@dataclass
class PasswordRecord:
	entry_id: str
	backend: str
	state: str = 'active'

	def retire(self) -> 'PasswordRecord':
		if self.state != 'active':
			raise BackendError(f"Password record for id {self.entry_id} is already {self.state}")
		self.state = 'retired'
		return self

def locate_record(vault_dir: Path, entry_id: str) -> Optional[PasswordRecord]:
	"""Find the live password record for `entry_id`, or None if there is none."""
	if marker_file(vault_dir, entry_id).is_file():
		return PasswordRecord(entry_id, ONEPASSWORD)
	if password_file(vault_dir, entry_id).is_file():
		return PasswordRecord(entry_id, FILE)
	return None

def has_retired_record(vault_dir: Path, entry_id: str) -> bool:
	return retired_file(vault_dir, entry_id).exists()

class PasswordBackend(ABC):
	name: str = ''

	def __init__(self, vault_dir: Path):
		self.vault_dir = Path(vault_dir)

	def check(self):
		"""Raise BackendUnavailableError if the backend cannot be used right now."""

	@abstractmethod
	def store(self, entry: Entry, secret: str) -> PasswordRecord: ...

	@abstractmethod
	def resolve(self, entry_id: str) -> str: ...

	@abstractmethod
	def retire(self, entry_id: str) -> PasswordRecord: ...

class LocalFileBackend(PasswordBackend):
	name = FILE

	def store(self, entry: Entry, secret: str) -> PasswordRecord:
		path = password_file(self.vault_dir, entry.id)
		self.vault_dir.mkdir(parents=True, exist_ok=True)
		try:
			fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
			with os.fdopen(fd, 'w', encoding='utf-8') as f:
				f.write(secret + '\n')
			os.chmod(path, 0o600)
		except OSError as e:
			raise BackendError(f"Failed to write password file {path.name}: {e}") from e
		log.info("Password saved in %s", path)
		return PasswordRecord(entry.id, self.name)

	def resolve(self, entry_id: str) -> str:
		path = password_file(self.vault_dir, entry_id)
		try:
			content = path.read_text(encoding='utf-8')
		except FileNotFoundError:
			raise SecretNotFoundError(f"Password file {path.name} not found")
		except OSError as e:
			raise BackendError(f"Failed to read password file {path.name}: {e}") from e
		secret = content.splitlines()[0] if content else ''
		if not secret:
			raise SecretNotFoundError(f"Password file {path.name} is empty")
		return secret

	def retire(self, entry_id: str) -> PasswordRecord:
		path = password_file(self.vault_dir, entry_id)
		target = retired_file(self.vault_dir, entry_id)
		n = 1
		while target.exists():
			target = target.with_name(f"{PASSWORD_PREFIX}{entry_id}{RETIRED_SUFFIX}.{n}"); n += 1
		try:
			os.rename(path, target)
		except OSError as e:
			raise BackendError(f"Failed to retire password file {path.name}: {e}") from e
		log.info("Password file renamed to %s", target.name)
		return PasswordRecord(entry_id, self.name).retire()

class OnePasswordBackend(PasswordBackend):
	"""1Password via the `op` CLI. Every call is bounded by `timeout` seconds."""
	name = ONEPASSWORD

	def __init__(self, vault_dir: Path, project: str, vault_name: str = DEFAULT_OP_VAULT,
			timeout: float = OP_TIMEOUT, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
		super().__init__(vault_dir)
		self.project = project
		self.vault_name = vault_name
		self.timeout = timeout
		self._runner = runner

	def item_title(self, entry_id: str) -> str:
		return f"{OP_ITEM_PREFIX}-{self.project}-{entry_id}"

	def _op(self, *args: str) -> subprocess.CompletedProcess:
		try:
			return self._runner(['op', *args], capture_output=True, text=True, timeout=self.timeout, check=False)
		except FileNotFoundError:
			raise BackendUnavailableError("1Password CLI 'op' not found. Install it from https://1password.com/downloads/command-line/")
		except subprocess.TimeoutExpired:
			raise BackendUnavailableError(f"'op {args[0]}' did not answer within {self.timeout:g}s")

	def check(self):
		if self._op('whoami').returncode != 0:
			raise BackendUnavailableError("Not signed in to 1Password CLI. Sign in with: op signin")

	def store(self, entry: Entry, secret: str) -> PasswordRecord:
		title = self.item_title(entry.id)
		log.info("Creating item '%s' in vault '%s'", title, self.vault_name)
		res = self._op('item', 'create', '--category', 'Secure Note', '--title', title, '--vault', self.vault_name,
			f'password={secret}', f'path={entry.path}', 'status=active')
		if res.returncode != 0:
			raise BackendError(f"Failed to create 1Password item '{title}' in vault '{self.vault_name}': {res.stderr.strip()}")
		marker = marker_file(self.vault_dir, entry.id)
		marker.parent.mkdir(parents=True, exist_ok=True)
		marker.touch()
		return PasswordRecord(entry.id, self.name)

	def resolve(self, entry_id: str) -> str:
		title = self.item_title(entry_id)
		res = self._op('read', f'op://{self.vault_name}/{title}/password')
		if res.returncode != 0:
			raise SecretNotFoundError(f"Failed to retrieve password from 1Password item '{title}' in vault '{self.vault_name}': {res.stderr.strip()}")
		secret = res.stdout.rstrip('\r\n')
		if not secret:
			raise SecretNotFoundError(f"1Password item '{title}' has an empty password field")
		return secret

	def retire(self, entry_id: str) -> PasswordRecord:
		"""Mark the item removed and drop the local marker.

		The marker goes even if the item edit fails; the failure is still raised.
		"""
		title = self.item_title(entry_id)
		try:
			res = self._op('item', 'edit', title, '--vault', self.vault_name, 'status=removed')
			if res.returncode != 0:
				raise BackendError(f"Failed to mark 1Password item '{title}' as removed: {res.stderr.strip()}")
		finally:
			marker_file(self.vault_dir, entry_id).unlink(missing_ok=True)
		log.info("Marked 1Password item '%s' as removed", title)
		return PasswordRecord(entry_id, self.name).retire()
