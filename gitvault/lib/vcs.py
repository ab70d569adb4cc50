"""Thin wrapper around the `git` executable."""
from __future__ import annotations
import logging, re, subprocess
from pathlib import Path
from typing import List, Optional, Union

log = logging.getLogger(__name__)

class GitError(Exception): ...

PathLike = Union[str, Path]

def _git(args: List[str], cwd: PathLike, check: bool = True) -> subprocess.CompletedProcess:
	try:
		res = subprocess.run(['git', *args], cwd=str(cwd), capture_output=True, text=True, check=False)
	except FileNotFoundError:
		raise GitError("git command not found")
	if check and res.returncode != 0:
		raise GitError(f"git {' '.join(args)} failed: {res.stderr.strip()}")
	return res

def find_toplevel(cwd: PathLike = '.') -> Optional[Path]:
	"""Repository root containing `cwd`, or None outside a work tree."""
	try:
		res = _git(['rev-parse', '--show-toplevel'], cwd, check=False)
	except GitError:
		return None
	if res.returncode != 0 or not res.stdout.strip():
		return None
	return Path(res.stdout.strip())

class Git:
	def __init__(self, root: PathLike):
		self.root = Path(root)

	def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
		return _git(list(args), self.root, check=check)

	def add(self, *paths: PathLike, force: bool = False):
		if not paths: return
		self.run('add', *(['-f'] if force else []), '--', *map(self._rel, paths))

	def unstage(self, path: PathLike):
		"""Drop `path` (recursively) from the index, keeping the working copy."""
		self.run('rm', '-r', '--cached', '--quiet', '--ignore-unmatch', '--', self._rel(path))

	def has_staged_changes(self, path: PathLike) -> bool:
		res = self.run('diff', '--cached', '--quiet', '--', self._rel(path), check=False)
		if res.returncode not in (0, 1):
			raise GitError(f"git diff --cached failed: {res.stderr.strip()}")
		return res.returncode == 1

	def hooks_dir(self) -> Path:
		out = self.run('rev-parse', '--git-path', 'hooks').stdout.strip()
		p = Path(out)
		return p if p.is_absolute() else self.root / p

	def project_name(self) -> str:
		"""Name of the `origin` remote repository, else the work tree directory name."""
		res = self.run('remote', 'get-url', 'origin', check=False)
		url = res.stdout.strip() if res.returncode == 0 else ''
		if url:
			m = re.search(r'([^/:]+?)(?:\.git)?/?$', url)
			if m:
				return m.group(1)
		return self.root.resolve().name

	def lfs_available(self) -> bool:
		try:
			return self.run('lfs', 'version', check=False).returncode == 0
		except GitError:
			return False

	def _rel(self, path: PathLike) -> str:
		p = Path(path)
		if p.is_absolute():
			p = p.relative_to(self.root)
		return p.as_posix()
