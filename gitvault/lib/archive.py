"""Archive codec: pack a vaulted path into an encrypted tar.gz and back.

Member names inside the container are repository-relative (for a directory
the top-level directory name is kept), so extracting into the repository
root reconstructs the original location.
"""
from __future__ import annotations
import gzip, logging, os, shutil, tarfile, tempfile, zlib
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from config.settings import ARCHIVE_EXTENSION, ARCHIVE_JOINER
from .crypto import EncryptingWriter, DecryptingReader, CryptoError, CorruptArchiveError

log = logging.getLogger(__name__)

class ArchiveError(Exception):
	"""I/O failure while reading the plaintext or writing the archive."""

def archive_name(rel_path: str) -> str:
	"""Storage file name for a canonical relative path (`a/b/` -> `a-b-.tar.gz.enc`)."""
	return rel_path.replace('/', ARCHIVE_JOINER) + ARCHIVE_EXTENSION

def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
	info.uid = info.gid = 0
	info.uname = info.gname = ''
	return info

def _walk(root: Path, rel_path: str):
	"""Yield (absolute, arcname) pairs in a stable order."""
	top = root / rel_path
	arc = rel_path.rstrip('/')
	yield top, arc
	if not top.is_dir() or top.is_symlink():
		return
	for dirpath, dirnames, filenames in os.walk(top):
		dirnames.sort(); filenames.sort()
		base = PurePosixPath(arc) / Path(dirpath).relative_to(top).as_posix()
		for name in dirnames + filenames:
			yield Path(dirpath) / name, str(base / name)

def encode(root: Path, rel_path: str, secret: str, dest: Path) -> Path:
	"""Pack `root/rel_path` and encrypt it into `dest`.

	The archive is written next to `dest` first and moved into place only when
	complete, so a failed encode never clobbers the previous archive.
	"""
	src = root / rel_path
	if not src.exists():
		raise ArchiveError(f"'{rel_path}' does not exist")
	dest.parent.mkdir(parents=True, exist_ok=True)
	fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix='.' + dest.name, suffix='.tmp')
	tmp = Path(tmp_name)
	try:
		with os.fdopen(fd, 'wb') as sink:
			with EncryptingWriter(sink, secret) as enc:
				with gzip.GzipFile(fileobj=enc, mode='wb', mtime=0) as gz:
					with tarfile.open(fileobj=gz, mode='w|', format=tarfile.PAX_FORMAT) as tar:
						for path, arcname in _walk(root, rel_path):
							tar.add(str(path), arcname=arcname, recursive=False, filter=_normalize)
		os.replace(tmp, dest)
	except OSError as e:
		tmp.unlink(missing_ok=True)
		raise ArchiveError(f"Failed to write archive for '{rel_path}': {e}") from e
	except BaseException:
		tmp.unlink(missing_ok=True)
		raise
	log.debug("Encoded '%s' -> %s (%d bytes)", rel_path, dest, dest.stat().st_size)
	return dest

@contextmanager
def _reading(archive: Path, rel_path: str):
	"""Map codec failures onto CryptoError / ArchiveError."""
	try:
		yield
	except CryptoError:
		raise
	except (tarfile.TarError, gzip.BadGzipFile, zlib.error, EOFError) as e:
		raise CorruptArchiveError(f"Archive for '{rel_path}' is corrupt: {e}") from e
	except OSError as e:
		raise ArchiveError(f"I/O failure on archive {archive.name}: {e}") from e

def _members(archive: Path, secret: str, rel_path: str):
	"""Yield (tar, member) pairs, checking placement; authenticates the whole stream at the end."""
	top = rel_path.rstrip('/')
	with open(archive, 'rb') as source:
		reader = DecryptingReader(source, secret)
		with gzip.GzipFile(fileobj=reader, mode='rb') as gz:
			with tarfile.open(fileobj=gz, mode='r|') as tar:
				for member in tar:
					if member.name != top and not member.name.startswith(top + '/'):
						raise CorruptArchiveError(f"Member '{member.name}' lies outside '{rel_path}'")
					yield tar, member
			# Reading the gzip trailer validates its CRC.
			gz.read()
		reader.drain()

def verify(archive: Path, secret: str, rel_path: str) -> int:
	"""Decode `archive` to nowhere; returns the number of members seen."""
	count = 0
	with _reading(archive, rel_path):
		for tar, member in _members(archive, secret, rel_path):
			if member.isfile():
				f = tar.extractfile(member)
				while f.read(1024 * 1024):
					pass
			count += 1
	return count

def decode(archive: Path, secret: str, rel_path: str, root: Path) -> Path:
	"""Decrypt `archive` and place `rel_path` under `root`.

	Extraction goes to a staging directory inside `root`; existing plaintext
	at the target is replaced only after the whole archive authenticated and
	unpacked, so a wrong secret or corrupt archive leaves it untouched.
	"""
	target = root / rel_path.rstrip('/')
	staging = Path(tempfile.mkdtemp(dir=root, prefix='.git-vault-extract-'))
	try:
		with _reading(archive, rel_path):
			for tar, member in _members(archive, secret, rel_path):
				tar.extract(member, path=staging, filter='data')
			staged = staging / rel_path.rstrip('/')
			if not staged.exists() and not staged.is_symlink():
				raise CorruptArchiveError(f"Archive does not contain '{rel_path}'")
			_remove_existing(target)
			target.parent.mkdir(parents=True, exist_ok=True)
			os.replace(staged, target)
	finally:
		shutil.rmtree(staging, ignore_errors=True)
	return target

def _remove_existing(target: Path):
	if target.is_dir() and not target.is_symlink():
		shutil.rmtree(target)
	elif target.exists() or target.is_symlink():
		target.unlink()
