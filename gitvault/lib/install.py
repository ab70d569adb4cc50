"""Set up a repository for git-vault: vault directory, config files and hooks."""
from __future__ import annotations
import logging, os, shlex, sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List
from config.settings import HOOK_NAMES, GITIGNORE_NAME, STORAGE_MODE_FILE, LFS_CONFIG_FILE, OP_VAULT_FILE
from .policy import ensure_password_rules
from .vault import Vault, VaultConfig

log = logging.getLogger(__name__)

HOOK_TAG = "# installed by git-vault"
HOOK_TEMPLATE = """#!/bin/sh
{tag}
# Runs `git-vault {command}` from the repository root.
cd "$(git rev-parse --show-toplevel)" || exit {fallback}
exec {python} -m gitvault.main {command}
"""

@dataclass
class InstallResult:
	vault: Vault
	hooks: List[Path] = field(default_factory=list)
	skipped_hooks: List[Path] = field(default_factory=list)

def hook_script(command: str) -> str:
	# A decrypt hook that cannot even start must not block the checkout.
	fallback = 1 if command == 'encrypt' else 0
	return HOOK_TEMPLATE.format(tag=HOOK_TAG, command=command, fallback=fallback, python=shlex.quote(sys.executable))

def install(root: Path, config: VaultConfig, force: bool = False, **vault_kwargs) -> InstallResult:
	"""Create or refresh the vault layout in `root`.

	Existing hooks not written by git-vault are left alone unless `force`.
	"""
	vault = Vault(root, config=config, **vault_kwargs)
	if config.storage_mode != 'file':
		vault.backend(config.storage_mode).check()
	config.save(vault.vault_dir)
	vault.storage_dir.mkdir(parents=True, exist_ok=True)
	vault.manifest.ensure()
	ensure_password_rules(vault.root, vault.vault_rel, ['file', config.storage_mode])

	result = InstallResult(vault)
	hooks_dir = vault.git.hooks_dir()
	hooks_dir.mkdir(parents=True, exist_ok=True)
	for name, command in HOOK_NAMES.items():
		hook = hooks_dir / name
		if hook.exists() and HOOK_TAG not in hook.read_text(encoding='utf-8', errors='replace') and not force:
			log.warning("Hook %s exists and was not installed by git-vault; leaving it alone (use --force)", hook)
			result.skipped_hooks.append(hook)
			continue
		hook.write_text(hook_script(command), encoding='utf-8')
		os.chmod(hook, 0o755)
		result.hooks.append(hook)
	config_files = [vault.vault_dir / n for n in (STORAGE_MODE_FILE, LFS_CONFIG_FILE, OP_VAULT_FILE)]
	vault.git.add(vault.manifest.path, *config_files, vault.root / GITIGNORE_NAME)
	log.info("git-vault installed in %s (%s storage)", vault.root, config.storage_mode)
	return result
