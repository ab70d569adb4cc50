"""Large-object policy and `.gitignore` / `.gitattributes` bookkeeping.

All rule edits are exact whole-line matches; a rule already present is never
written twice.
"""
from __future__ import annotations
import logging, math, os
from pathlib import Path
from typing import Iterable, List
from config.settings import (
	ARCHIVE_EXTENSION, GITIGNORE_NAME, GITATTRIBUTES_NAME, PASSWORD_PREFIX,
	PASSWORD_SUFFIX, MARKER_SUFFIX
)

log = logging.getLogger(__name__)

INLINE = 'inline'
EXTERNAL = 'external'
MB = 1024 * 1024
LFS_ATTRS = 'filter=lfs diff=lfs merge=lfs -text'
PW_COMMENT_LINE = "# Git-Vault password files (DO NOT COMMIT)"
MARKER_COMMENT_LINE = "# Git-Vault 1Password marker files (DO NOT COMMIT)"

def classify(size_bytes: int, threshold_mb: int) -> str:
	"""`external` once the archive, rounded up to whole megabytes, reaches the threshold."""
	size_mb = math.ceil(size_bytes / MB)
	return EXTERNAL if size_mb >= threshold_mb else INLINE

def read_lines(path: Path) -> List[str]:
	if not path.is_file():
		return []
	return path.read_text(encoding='utf-8').splitlines()

def append_lines(path: Path, lines: Iterable[str]) -> bool:
	"""Append the lines not yet present; returns True if the file changed."""
	existing = read_lines(path)
	new = [l for l in lines if l not in existing]
	if not new:
		return False
	text = path.read_text(encoding='utf-8') if path.is_file() else ''
	if text and not text.endswith('\n'):
		text += '\n'
	path.write_text(text + '\n'.join(new) + '\n', encoding='utf-8')
	return True

def remove_lines(path: Path, lines: Iterable[str]) -> bool:
	drop = set(lines)
	existing = read_lines(path)
	kept = [l for l in existing if l not in drop]
	if len(kept) == len(existing):
		return False
	tmp = path.with_name(path.name + '.tmp')
	tmp.write_text(''.join(l + '\n' for l in kept), encoding='utf-8')
	os.replace(tmp, path)
	return True

def ignore_rule(rel_path: str) -> str:
	return '/' + rel_path

def password_globs(vault_rel: str) -> dict:
	return {
		'file': [PW_COMMENT_LINE, f"{vault_rel}/{PASSWORD_PREFIX}*{PASSWORD_SUFFIX}"],
		'1password': [MARKER_COMMENT_LINE, f"{vault_rel}/{PASSWORD_PREFIX}*{MARKER_SUFFIX}"],
	}

def ensure_ignore_rules(root: Path, rel_path: str, vault_rel: str, backend: str) -> bool:
	"""Ignore the plaintext path and the password artifacts of `backend`."""
	gitignore = root / GITIGNORE_NAME
	changed = append_lines(gitignore, [ignore_rule(rel_path)])
	changed |= ensure_password_rules(root, vault_rel, [backend])
	return changed

def ensure_password_rules(root: Path, vault_rel: str, backends: Iterable[str]) -> bool:
	gitignore = root / GITIGNORE_NAME
	changed = False
	globs = password_globs(vault_rel)
	for backend in backends:
		comment, pattern = globs[backend]
		# The comment is only written together with a missing pattern.
		if pattern not in read_lines(gitignore):
			changed |= append_lines(gitignore, [comment, pattern])
	return changed

def has_ignore_rule(root: Path, rel_path: str) -> bool:
	return ignore_rule(rel_path) in read_lines(root / GITIGNORE_NAME)

def prune_ignore_rule(root: Path, rel_path: str) -> bool:
	return remove_lines(root / GITIGNORE_NAME, [ignore_rule(rel_path)])

def prune_password_rules(root: Path, vault_rel: str) -> bool:
	lines = [l for pair in password_globs(vault_rel).values() for l in pair]
	return remove_lines(root / GITIGNORE_NAME, lines)

def lfs_rules(archive_rel: str, storage_rel: str):
	"""(wildcard rule covering the storage dir, rule for this archive only)."""
	return (f"{storage_rel}/*{ARCHIVE_EXTENSION} {LFS_ATTRS}", f"{archive_rel} {LFS_ATTRS}")

def ensure_lfs_rule(root: Path, archive_rel: str, storage_rel: str) -> bool:
	attributes = root / GITATTRIBUTES_NAME
	wildcard, specific = lfs_rules(archive_rel, storage_rel)
	existing = read_lines(attributes)
	if wildcard in existing:
		log.info("Using existing wildcard LFS rule for vault archives")
		return False
	if append_lines(attributes, [specific]):
		log.info("Added LFS tracking for '%s' in %s", archive_rel, GITATTRIBUTES_NAME)
		return True
	return False

def prune_lfs_rule(root: Path, archive_rel: str, storage_rel: str) -> bool:
	_, specific = lfs_rules(archive_rel, storage_rel)
	return remove_lines(root / GITATTRIBUTES_NAME, [specific])
