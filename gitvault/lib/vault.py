"""Vault context: repository layout, per-repository config and backend binding."""
from __future__ import annotations
import logging, os, subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
from config.settings import (
	VAULT_DIR_NAME, MANIFEST_NAME, STORAGE_DIR_NAME, STORAGE_MODE_FILE, LFS_CONFIG_FILE,
	OP_VAULT_FILE, STORAGE_MODES, DEFAULT_STORAGE_MODE, DEFAULT_LFS_THRESHOLD_MB,
	DEFAULT_OP_VAULT, OP_TIMEOUT
)
from .archive import archive_name
from .backends import (
	PasswordBackend, LocalFileBackend, OnePasswordBackend, PasswordRecord, locate_record, FILE, ONEPASSWORD
)
from .manifest import Manifest, Entry, derive_id
from .vcs import Git, find_toplevel

log = logging.getLogger(__name__)

class ConfigError(Exception): ...

class VaultNotFoundError(ConfigError): ...

def _read_setting(path: Path) -> Optional[str]:
	if not path.is_file():
		return None
	value = path.read_text(encoding='utf-8').strip()
	return value or None

@dataclass
class VaultConfig:
	storage_mode: str = DEFAULT_STORAGE_MODE
	lfs_threshold_mb: int = DEFAULT_LFS_THRESHOLD_MB
	op_vault: str = DEFAULT_OP_VAULT
	op_timeout: float = OP_TIMEOUT

	@classmethod
	def load(cls, vault_dir: Path) -> 'VaultConfig':
		cfg = cls()
		mode = _read_setting(vault_dir / STORAGE_MODE_FILE)
		if mode is not None:
			if mode not in STORAGE_MODES:
				raise ConfigError(f"Unknown storage mode '{mode}' in {STORAGE_MODE_FILE} (expected one of {', '.join(STORAGE_MODES)})")
			cfg.storage_mode = mode
		threshold = _read_setting(vault_dir / LFS_CONFIG_FILE)
		if threshold is not None:
			try:
				cfg.lfs_threshold_mb = int(threshold)
				if cfg.lfs_threshold_mb < 0: raise ValueError(threshold)
			except ValueError:
				log.warning("Ignoring invalid LFS threshold %r in %s, using %dMB", threshold, LFS_CONFIG_FILE, DEFAULT_LFS_THRESHOLD_MB)
				cfg.lfs_threshold_mb = DEFAULT_LFS_THRESHOLD_MB
		cfg.op_vault = _read_setting(vault_dir / OP_VAULT_FILE) or DEFAULT_OP_VAULT
		return cfg

	def save(self, vault_dir: Path):
		vault_dir.mkdir(parents=True, exist_ok=True)
		(vault_dir / STORAGE_MODE_FILE).write_text(self.storage_mode + '\n', encoding='utf-8')
		(vault_dir / LFS_CONFIG_FILE).write_text(f"{self.lfs_threshold_mb}\n", encoding='utf-8')
		(vault_dir / OP_VAULT_FILE).write_text(self.op_vault + '\n', encoding='utf-8')

class Vault:
	"""Everything one operation or hook run needs about a vaulted repository.

	Config is read once, when the Vault is constructed.
	"""

	def __init__(self, root: Union[str, Path], config: Optional[VaultConfig] = None,
			op_runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
		self.root = Path(root).resolve()
		self.vault_dir = self.root / VAULT_DIR_NAME
		self.storage_dir = self.vault_dir / STORAGE_DIR_NAME
		self.manifest = Manifest(self.vault_dir / MANIFEST_NAME)
		self.config = config or VaultConfig.load(self.vault_dir)
		self.git = Git(self.root)
		self._op_runner = op_runner
		self._backends: Dict[str, PasswordBackend] = {}

	@classmethod
	def discover(cls, cwd: Union[str, Path] = '.', **kwargs) -> 'Vault':
		"""Locate the vaulted repository from `cwd`.

		Hooks may run from the work tree root or from inside `.git/hooks`, so
		after asking git the parent directories are probed as well.
		"""
		cwd = Path(cwd).resolve()
		top = find_toplevel(cwd)
		if top is not None and (top / VAULT_DIR_NAME).is_dir():
			return cls(top, **kwargs)
		for candidate in (cwd, cwd.parent, cwd.parent.parent):
			if (candidate / VAULT_DIR_NAME).is_dir():
				return cls(candidate, **kwargs)
		raise VaultNotFoundError(f"Could not locate a {VAULT_DIR_NAME} directory from {cwd}")

	@property
	def vault_rel(self) -> str:
		return VAULT_DIR_NAME

	@property
	def storage_rel(self) -> str:
		return f"{VAULT_DIR_NAME}/{STORAGE_DIR_NAME}"

	def archive_path(self, rel_path: str) -> Path:
		return self.storage_dir / archive_name(rel_path)

	def archive_rel(self, rel_path: str) -> str:
		return f"{self.storage_rel}/{archive_name(rel_path)}"

	def backend(self, name: str) -> PasswordBackend:
		if name not in self._backends:
			if name == FILE:
				self._backends[name] = LocalFileBackend(self.vault_dir)
			elif name == ONEPASSWORD:
				self._backends[name] = OnePasswordBackend(self.vault_dir, self.git.project_name(),
					vault_name=self.config.op_vault, timeout=self.config.op_timeout, runner=self._op_runner)
			else:
				raise ConfigError(f"Unknown password backend '{name}'")
		return self._backends[name]

	def record(self, entry: Entry) -> Optional[PasswordRecord]:
		return locate_record(self.vault_dir, entry.id)

	def bind(self, entry: Entry) -> Entry:
		"""Attach the backend recorded for this entry's id (None when it has no password)."""
		rec = self.record(entry)
		entry.backend = rec.backend if rec else None
		return entry

	def entries(self) -> List[Entry]:
		return [self.bind(e) for e in self.manifest]

	def canonical(self, path: Union[str, Path]) -> str:
		"""Repository-relative POSIX form of `path`; directories end with `/`."""
		p = Path(path)
		if not p.is_absolute():
			p = Path(os.getcwd()) / p
		p = p.resolve()
		try:
			rel = p.relative_to(self.root).as_posix()
		except ValueError:
			raise ConfigError(f"'{path}' is outside the repository {self.root}")
		if rel in ('', '.'):
			raise ConfigError("Cannot vault the repository root")
		first = rel.split('/', 1)[0]
		if first in (VAULT_DIR_NAME, '.git'):
			raise ConfigError(f"Cannot vault '{rel}': it lies inside {first}")
		return rel + '/' if p.is_dir() else rel

	def lookup(self, path: Union[str, Path]) -> Optional[Entry]:
		"""Active entry for `path`, whether or not the plaintext still exists."""
		rel = self.canonical(path).rstrip('/')
		for candidate in (rel, rel + '/'):
			entry = self.manifest.get(derive_id(candidate))
			if entry is not None and entry.path == candidate:
				return self.bind(entry)
		return None
