"""Manifest model: the ledger of vaulted paths.

One record per line, `<id> <relative-path>`. Comment (`#`) and blank lines
are ignored; malformed lines are skipped with a warning. Directory paths end
with `/`, which is part of the string the id is derived from.
"""
from __future__ import annotations
import hashlib, logging, os, re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional
from config.settings import ID_LENGTH

log = logging.getLogger(__name__)

ID_PATTERN = re.compile(r'^[0-9a-f]{%d}$' % ID_LENGTH)
HEADER = "# git-vault manifest: <id> <relative-path>\n"

class ManifestError(Exception): ...

def derive_id(rel_path: str) -> str:
	"""Stable short identifier for a canonical relative path.

	Truncated SHA-1, so distinct paths colliding is possible in principle but
	improbable for any realistic repository.
	"""
	return hashlib.sha1(rel_path.encode('utf-8')).hexdigest()[:ID_LENGTH]

@dataclass
class Entry:
	id: str
	path: str
	status: str = 'active'
	backend: Optional[str] = None

	@property
	def is_dir(self) -> bool:
		return self.path.endswith('/')

	def describe(self) -> str:
		return f"'{self.path}' (id {self.id})"

class Manifest:
	def __init__(self, path: Path):
		self.path = Path(path)

	def exists(self) -> bool:
		return self.path.is_file()

	def entries(self) -> List[Entry]:
		return [e for e in self]

	def __iter__(self) -> Iterator[Entry]:
		if not self.exists():
			return
		with open(self.path, encoding='utf-8') as f:
			for lineno, raw in enumerate(f, 1):
				entry = self._parse(raw, lineno)
				if entry is not None:
					yield entry

	def _parse(self, raw: str, lineno: int) -> Optional[Entry]:
		line = raw.rstrip('\r\n')
		if not line.strip() or line.lstrip().startswith('#'):
			return None
		parts = line.split(' ', 1)
		if len(parts) != 2 or not parts[1] or not ID_PATTERN.match(parts[0]):
			log.warning("Skipping malformed line %d in %s: %r", lineno, self.path, line)
			return None
		return Entry(parts[0], parts[1])

	def get(self, entry_id: str) -> Optional[Entry]:
		return next((e for e in self if e.id == entry_id), None)

	def __contains__(self, entry_id: str) -> bool:
		return self.get(entry_id) is not None

	def __len__(self) -> int:
		return sum(1 for _ in self)

	def ensure(self):
		if not self.exists():
			self.path.parent.mkdir(parents=True, exist_ok=True)
			self.path.write_text(HEADER, encoding='utf-8')

	def append(self, entry: Entry):
		if entry.id in self:
			raise ManifestError(f"{entry.describe()} is already in the manifest")
		self.ensure()
		with open(self.path, 'r+', encoding='utf-8') as f:
			content = f.read()
			if content and not content.endswith('\n'):
				f.write('\n')
			f.write(f"{entry.id} {entry.path}\n")

	def remove(self, entry_id: str) -> Entry:
		"""Drop the record for `entry_id`, rewriting the file atomically."""
		entry = self.get(entry_id)
		if entry is None:
			raise ManifestError(f"id {entry_id} is not in the manifest")
		with open(self.path, encoding='utf-8') as f:
			lines = f.readlines()
		kept = [l for l in lines if l.split(' ', 1)[0] != entry_id]
		tmp = self.path.with_suffix('.tmp')
		tmp.write_text(''.join(kept), encoding='utf-8')
		os.replace(tmp, self.path)
		entry.status = 'removed'
		return entry
