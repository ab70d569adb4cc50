"""Lifecycle hooks: encrypt before commit, decrypt after checkout/merge.

Every manifest entry is handled on its own and yields an EntryResult; the
HookReport aggregates them and decides the exit status. Only the encrypt
hook can fail the surrounding git operation.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from .archive import ArchiveError, decode, encode
from .backends import BackendError, BackendUnavailableError, SecretNotFoundError, FILE
from .crypto import CryptoError
from .lifecycle import apply_large_object_policy
from .manifest import Entry
from .vault import Vault
from .vcs import GitError

log = logging.getLogger(__name__)

class Outcome(Enum):
	DONE = 'done'
	SKIPPED = 'skipped'
	FAILED = 'failed'

@dataclass
class EntryResult:
	entry: Entry
	outcome: Outcome
	message: str = ''
	fatal: bool = False

@dataclass
class HookReport:
	hook: str
	results: List[EntryResult] = field(default_factory=list)

	def add(self, result: EntryResult) -> EntryResult:
		self.results.append(result)
		return result

	def count(self, outcome: Outcome) -> int:
		return sum(1 for r in self.results if r.outcome is outcome)

	@property
	def fatal(self) -> bool:
		return any(r.fatal for r in self.results)

	@property
	def exit_code(self) -> int:
		return 1 if self.fatal else 0

def _skip(entry: Entry, message: str, level: Optional[int] = logging.INFO) -> EntryResult:
	if level is not None:
		log.log(level, "%s: %s. Skipping.", entry.describe(), message)
	return EntryResult(entry, Outcome.SKIPPED, message)

def _fail(entry: Entry, message: str, fatal: bool) -> EntryResult:
	log.error("%s: %s", entry.describe(), message)
	return EntryResult(entry, Outcome.FAILED, message, fatal)

def encrypt_entry(vault: Vault, entry: Entry) -> EntryResult:
	"""Re-encrypt `entry` if its plaintext is staged.

	Whatever the outcome, staged plaintext is dropped from the index
	before returning, so it can never reach the commit.
	"""
	staged = vault.git.has_staged_changes(entry.path)
	try:
		result = _encrypt_staged(vault, entry, staged)
	finally:
		if staged:
			vault.git.unstage(entry.path)
	if staged and result.outcome is not Outcome.DONE:
		log.warning("%s: plaintext removed from the index; the archive was not updated", entry.describe())
	return result

def _encrypt_staged(vault: Vault, entry: Entry, staged: bool) -> EntryResult:
	if entry.backend is None:
		return _skip(entry, "neither password file nor 1Password marker found, cannot encrypt", logging.WARNING)
	if not (vault.root / entry.path).exists():
		return _skip(entry, "plaintext not found in working tree")
	if not staged:
		return _skip(entry, "nothing staged", logging.DEBUG)
	be = vault.backend(entry.backend)
	try:
		be.check()
		secret = be.resolve(entry.id)
	except SecretNotFoundError as e:
		if entry.backend == FILE:
			return _skip(entry, f"{e}, cannot encrypt", logging.WARNING)
		return _fail(entry, f"cannot encrypt: {e}", fatal=True)
	except BackendError as e:
		return _fail(entry, f"cannot encrypt: {e}", fatal=True)
	log.info("Encrypting '%s' -> %s (id %s)", entry.path, vault.archive_rel(entry.path), entry.id)
	try:
		archive = encode(vault.root, entry.path, secret, vault.archive_path(entry.path))
		_, extra = apply_large_object_policy(vault, entry.path)
		vault.git.add(archive, *extra)
	except (ArchiveError, CryptoError, GitError, OSError) as e:
		return _fail(entry, f"encryption failed: {e}", fatal=True)
	return EntryResult(entry, Outcome.DONE, "encrypted")

def decrypt_entry(vault: Vault, entry: Entry) -> EntryResult:
	if entry.backend is None:
		return _skip(entry, "neither password file nor 1Password marker found")
	archive = vault.archive_path(entry.path)
	if not archive.is_file():
		return _skip(entry, f"archive {archive.name} missing")
	be = vault.backend(entry.backend)
	try:
		be.check()
	except BackendUnavailableError as e:
		return _skip(entry, f"password backend unavailable ({e})")
	try:
		secret = be.resolve(entry.id)
	except BackendError as e:
		return _skip(entry, f"could not retrieve password ({e})")
	log.info("Decrypting %s -> '%s' (id %s)", archive.name, entry.path, entry.id)
	try:
		decode(archive, secret, entry.path, vault.root)
	except (ArchiveError, CryptoError, OSError) as e:
		return _fail(entry, f"decryption failed, existing plaintext left as is: {e}", fatal=False)
	return EntryResult(entry, Outcome.DONE, "decrypted")

def run_encrypt(vault: Vault) -> HookReport:
	report = HookReport('encrypt')
	if not vault.manifest.exists():
		return report
	for entry in vault.entries():
		try:
			report.add(encrypt_entry(vault, entry))
		except (BackendError, GitError, OSError) as e:
			report.add(_fail(entry, f"unexpected error: {e}", fatal=True))
	if report.fatal:
		log.error("One or more encryptions failed. Aborting commit.")
	elif report.count(Outcome.DONE):
		log.info("git-vault pre-commit encryption finished (%d encrypted)", report.count(Outcome.DONE))
	return report

def run_decrypt(vault: Vault) -> HookReport:
	report = HookReport('decrypt')
	if not vault.manifest.exists():
		return report
	for entry in vault.entries():
		try:
			report.add(decrypt_entry(vault, entry))
		except (BackendError, GitError, OSError) as e:
			report.add(_fail(entry, f"unexpected error: {e}", fatal=False))
	if report.count(Outcome.DONE):
		log.info("git-vault decryption finished (%d decrypted)", report.count(Outcome.DONE))
	return report
