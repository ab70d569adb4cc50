"""Entry lifecycle: vaulting a path (add) and unmanaging it (remove).

Both operations validate everything they can before touching the
repository; state errors raise EntryError with nothing changed.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union
from config.settings import GITIGNORE_NAME, GITATTRIBUTES_NAME
from .archive import archive_name, encode, verify
from .backends import (
	BackendError, PasswordRecord, has_retired_record, locate_record, password_file, marker_file,
	retired_file, FILE
)
from .manifest import Entry, derive_id
from .policy import (
	EXTERNAL, classify, ensure_ignore_rules, ensure_lfs_rule, has_ignore_rule, ignore_rule,
	prune_ignore_rule, prune_lfs_rule, prune_password_rules
)
from .vault import Vault

log = logging.getLogger(__name__)

class EntryError(Exception): ...

@dataclass
class AddResult:
	entry: Entry
	archive: Path
	storage: str
	staged: List[Path] = field(default_factory=list)

@dataclass
class RemoveResult:
	entry: Entry
	record: Optional[PasswordRecord]
	archive: Path
	ignore_pruned: bool = False

def apply_large_object_policy(vault: Vault, rel_path: str) -> Tuple[str, List[Path]]:
	"""Classify the archive for `rel_path`; for large ones make sure an LFS rule covers it.

	Returns the classification and the files that need staging.
	"""
	archive = vault.archive_path(rel_path)
	decision = classify(archive.stat().st_size, vault.config.lfs_threshold_mb)
	if decision != EXTERNAL:
		return decision, []
	log.info("Archive for '%s' reaches the LFS threshold (%dMB)", rel_path, vault.config.lfs_threshold_mb)
	if not vault.git.lfs_available():
		log.warning("Git LFS not available. Large archive for '%s' will be stored directly in Git.", rel_path)
		return decision, []
	if ensure_lfs_rule(vault.root, vault.archive_rel(rel_path), vault.storage_rel):
		return decision, [vault.root / GITATTRIBUTES_NAME]
	return decision, []

def _check_addable(vault: Vault, rel: str, entry_id: str, force: bool):
	existing = vault.manifest.get(entry_id)
	if existing is not None:
		if existing.path == rel:
			raise EntryError(f"'{rel}' (id {entry_id}) is already managed by git-vault")
		raise EntryError(f"'{rel}' hashes to id {entry_id}, already used by '{existing.path}'")
	name = archive_name(rel)
	for other in vault.manifest:
		if archive_name(other.path) == name:
			raise EntryError(f"Archive name '{name}' for '{rel}' collides with managed path '{other.path}'")
	if locate_record(vault.vault_dir, entry_id) is not None and not force:
		raise EntryError(f"A password record for id {entry_id} exists without a manifest entry; pass --force to overwrite it")
	if has_retired_record(vault.vault_dir, entry_id):
		if not force:
			raise EntryError(f"'{rel}' was vaulted before and removed; its retired password is kept in "
				f"{retired_file(vault.vault_dir, entry_id).name}. Pass --force to add it again with a new password")
		log.warning("Re-adding previously removed '%s' (id %s); the retired password file is left as is", rel, entry_id)

def _snapshot(*paths: Path) -> Dict[Path, Optional[str]]:
	"""Contents of `paths` (None for absent files) so a failed add can put them back."""
	return {p: p.read_text(encoding='utf-8') if p.is_file() else None for p in paths}

def _restore(snapshot: Dict[Path, Optional[str]]):
	for path, text in snapshot.items():
		if text is None:
			path.unlink(missing_ok=True)
		else:
			path.write_text(text, encoding='utf-8')

def _rollback(vault: Vault, entry: Entry, stored: bool, appended: bool, snapshot: Dict[Path, Optional[str]]):
	vault.archive_path(entry.path).unlink(missing_ok=True)
	if appended:
		vault.manifest.remove(entry.id)
	if stored and entry.backend != FILE:
		try:
			vault.backend(entry.backend).retire(entry.id)
		except BackendError as e:
			log.error("Rollback could not retire the password of %s: %s", entry.describe(), e)
	# Rule files and any password artifact that existed before go back to what they were.
	_restore(snapshot)

def add_path(vault: Vault, path: Union[str, Path], secret: str, backend: Optional[str] = None, force: bool = False) -> AddResult:
	if not Path(path).exists():
		raise EntryError(f"'{path}' does not exist")
	rel = vault.canonical(path)
	entry_id = derive_id(rel)
	_check_addable(vault, rel, entry_id, force)
	entry = Entry(entry_id, rel, backend=backend or vault.config.storage_mode)
	be = vault.backend(entry.backend)
	be.check()

	pw = password_file(vault.vault_dir, entry_id)
	if force and pw.is_file() and entry.backend == FILE:
		log.warning("Overwriting stale password file %s; it is restored if the add fails", pw.name)
	snapshot = _snapshot(vault.root / GITIGNORE_NAME, vault.root / GITATTRIBUTES_NAME,
		pw, marker_file(vault.vault_dir, entry_id))

	archive = encode(vault.root, rel, secret, vault.archive_path(rel))
	stored = appended = False
	try:
		be.store(entry, secret)
		stored = True
		decision, staged = apply_large_object_policy(vault, rel)
		vault.manifest.append(entry)
		appended = True
		ensure_ignore_rules(vault.root, rel, vault.vault_rel, entry.backend)
		staged = [archive, vault.manifest.path, vault.root / GITIGNORE_NAME] + staged
		vault.git.add(*staged)
	except Exception:
		log.error("Adding %s failed; rolling back", entry.describe())
		_rollback(vault, entry, stored, appended, snapshot)
		raise
	log.info("'%s' is now managed by git-vault (id %s, %s backend, %s storage)", rel, entry_id, entry.backend, decision)
	return AddResult(entry, archive, decision, staged)

def remove_path(vault: Vault, path: Union[str, Path], prune_ignore: Callable[[str], bool] = lambda rule: False) -> RemoveResult:
	"""Unmanage `path` after proving the stored password still opens its archive.

	`prune_ignore` is asked whether to drop the path's ignore rule. The
	plaintext itself is never touched.
	"""
	entry = vault.lookup(path)
	if entry is None:
		raise EntryError(f"'{path}' is not currently managed by git-vault")
	if entry.backend is None:
		raise EntryError(f"Neither password file nor 1Password marker found for {entry.describe()}; cannot verify the password")
	archive = vault.archive_path(entry.path)
	if not archive.is_file():
		raise EntryError(f"Archive {archive.name} for {entry.describe()} is missing; cannot verify the password")
	be = vault.backend(entry.backend)
	be.check()
	verify(archive, be.resolve(entry.id), entry.path)
	log.info("Password verified for %s; removing", entry.describe())

	vault.manifest.remove(entry.id)
	record = None
	try:
		record = be.retire(entry.id)
	except BackendError as e:
		log.error("Could not retire the password of %s, continuing with local cleanup: %s", entry.describe(), e)
	vault.git.unstage(archive)
	archive.unlink(missing_ok=True)
	staged = [vault.manifest.path]
	if prune_lfs_rule(vault.root, vault.archive_rel(entry.path), vault.storage_rel):
		staged.append(vault.root / GITATTRIBUTES_NAME)

	pruned = False
	rule = ignore_rule(entry.path)
	if has_ignore_rule(vault.root, entry.path) and prune_ignore(rule):
		pruned = prune_ignore_rule(vault.root, entry.path)
		if len(vault.manifest) == 0:
			log.info("Manifest is now empty; removing the password ignore rules")
			prune_password_rules(vault.root, vault.vault_rel)
		staged.append(vault.root / GITIGNORE_NAME)
	vault.git.add(*staged)
	entry.status = 'removed'
	return RemoveResult(entry, record, archive, pruned)
