"""Cryptographic utilities (streaming encryption + password strength).

Archive ciphertext layout:

	[magic][version][iterations][salt][nonce prefix]   header, bound as AAD
	[verification nonce][verification ciphertext]      key check
	[chunk 0]...[chunk n]                               AES-256-GCM chunks

Each chunk holds up to CHUNK_SIZE plaintext bytes. Its nonce is the nonce
prefix followed by a big-endian chunk counter and a final-chunk flag, so
reordered, dropped or truncated chunks fail authentication.
"""
from __future__ import annotations
import secrets, struct
from typing import BinaryIO, Tuple
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from config.settings import (
	DEFAULT_ITERATIONS, SALT_LENGTH, KEY_LENGTH, NONCE_LENGTH, NONCE_PREFIX_LENGTH,
	AUTH_TAG_LENGTH, CHUNK_SIZE
)

MAGIC = b'GVLT'
VERSION = 1
HEADER_FORMAT = f'>4sBI{SALT_LENGTH}s{NONCE_PREFIX_LENGTH}s'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
VERIFICATION_TEXT = b'GIT_VAULT_KEY_VERIFICATION'
VERIFICATION_SIZE = NONCE_LENGTH + len(VERIFICATION_TEXT) + AUTH_TAG_LENGTH
MAX_ITERATIONS = 10_000_000

class CryptoError(Exception):
	pass

class WrongSecretError(CryptoError):
	"""The secret does not open this archive."""

class CorruptArchiveError(CryptoError):
	"""The archive is truncated, tampered with or not an archive at all."""

def derive_key(secret: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
	if not secret:
		raise CryptoError("Password empty")
	kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, iterations=iterations)
	return kdf.derive(secret.encode('utf-8'))

def _chunk_nonce(prefix: bytes, counter: int, final: bool) -> bytes:
	if counter > 0xFFFFFFFF: raise CryptoError("Archive too large")
	return prefix + struct.pack('>IB', counter, 1 if final else 0)

class EncryptingWriter:
	"""Write-only file object that encrypts everything written to `sink`.

	`close()` must be called to emit the final chunk; it does not close `sink`.
	"""

	def __init__(self, sink: BinaryIO, secret: str, iterations: int = DEFAULT_ITERATIONS):
		salt = secrets.token_bytes(SALT_LENGTH)
		self._prefix = secrets.token_bytes(NONCE_PREFIX_LENGTH)
		self._aead = AESGCM(derive_key(secret, salt, iterations))
		self._aad = struct.pack(HEADER_FORMAT, MAGIC, VERSION, iterations, salt, self._prefix)
		self._sink = sink
		self._buffer = bytearray()
		self._counter = 0
		self.closed = False
		check_nonce = secrets.token_bytes(NONCE_LENGTH)
		sink.write(self._aad)
		sink.write(check_nonce + self._aead.encrypt(check_nonce, VERIFICATION_TEXT, self._aad))

	def write(self, data) -> int:
		if self.closed: raise ValueError("write to closed EncryptingWriter")
		self._buffer += data
		# Keep at least one byte buffered so the final chunk is never empty unless the stream is.
		while len(self._buffer) > CHUNK_SIZE:
			self._emit(bytes(self._buffer[:CHUNK_SIZE]), final=False)
			del self._buffer[:CHUNK_SIZE]
		return len(data)

	def flush(self):
		pass

	def close(self):
		if self.closed: return
		self._emit(bytes(self._buffer), final=True)
		self._buffer.clear()
		self.closed = True

	def _emit(self, chunk: bytes, final: bool):
		nonce = _chunk_nonce(self._prefix, self._counter, final)
		self._sink.write(self._aead.encrypt(nonce, chunk, self._aad))
		self._counter += 1

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc, tb):
		# An aborted stream must not be sealed as if complete.
		if exc_type is None:
			self.close()

class DecryptingReader:
	"""Read-only file object yielding the plaintext of an encrypted stream.

	The header and key check are validated on construction: a bad secret
	raises WrongSecretError before any plaintext is produced. Chunk failures
	afterwards raise CorruptArchiveError.
	"""

	def __init__(self, source: BinaryIO, secret: str):
		header = source.read(HEADER_SIZE)
		if len(header) != HEADER_SIZE:
			raise CorruptArchiveError("Archive header truncated")
		magic, version, iterations, salt, prefix = struct.unpack(HEADER_FORMAT, header)
		if magic != MAGIC:
			raise CorruptArchiveError("Not a git-vault archive")
		if version != VERSION:
			raise CorruptArchiveError(f"Unsupported archive version {version}")
		if not 0 < iterations <= MAX_ITERATIONS:
			raise CorruptArchiveError("Invalid key derivation parameters")
		check = source.read(VERIFICATION_SIZE)
		if len(check) != VERIFICATION_SIZE:
			raise CorruptArchiveError("Archive key check truncated")
		self._aead = AESGCM(derive_key(secret, salt, iterations))
		self._aad = header
		try:
			plain = self._aead.decrypt(check[:NONCE_LENGTH], check[NONCE_LENGTH:], header)
		except InvalidTag:
			raise WrongSecretError("Wrong password for archive")
		if plain != VERIFICATION_TEXT:
			raise CorruptArchiveError("Archive key check mismatch")
		self._source = source
		self._prefix = prefix
		self._counter = 0
		self._pending = source.read(CHUNK_SIZE + AUTH_TAG_LENGTH)
		self._buffer = bytearray()
		self.finished = False

	def read(self, size: int = -1) -> bytes:
		while not self.finished and (size < 0 or len(self._buffer) < size):
			self._next_chunk()
		if size < 0: size = len(self._buffer)
		out = bytes(self._buffer[:size])
		del self._buffer[:size]
		return out

	def drain(self):
		"""Authenticate the remainder of the stream without keeping it."""
		while not self.finished:
			self._next_chunk()
			self._buffer.clear()

	def _next_chunk(self):
		current = self._pending
		self._pending = self._source.read(CHUNK_SIZE + AUTH_TAG_LENGTH)
		final = not self._pending
		if len(current) < AUTH_TAG_LENGTH:
			raise CorruptArchiveError("Archive truncated")
		try:
			self._buffer += self._aead.decrypt(_chunk_nonce(self._prefix, self._counter, final), current, self._aad)
		except InvalidTag:
			raise CorruptArchiveError(f"Archive chunk {self._counter} failed authentication")
		self._counter += 1
		self.finished = final

def check_password_strength(password: str) -> Tuple[int, str]:
	score = 0; fb = []
	L = len(password)
	if L >= 12: score += 30
	elif L >= 8: score += 20; fb.append('Use 12+ chars')
	else: fb.append('Too short (min 8)')
	sets = [any(c.islower() for c in password), any(c.isupper() for c in password), any(c.isdigit() for c in password), any(c in '!@#$%^&*()_+-=[]{}|;:,.<>?' for c in password)]
	score += sum(sets)*15
	if sum(sets) < 4: fb.append('Add diverse character sets')
	common = ['password','qwerty','abc','123','111']
	if any(p in password.lower() for p in common):
		score -= 15; fb.append('Avoid common patterns')
	if L and len(set(password)) < L*0.6:
		score -= 10; fb.append('Too many repeats')
	score = max(0, min(100, score))
	if score >= 80: label='Very Strong'
	elif score >= 60: label='Strong'
	elif score >= 40: label='Moderate'
	elif score >= 20: label='Weak'
	else: label='Very Weak'
	text = f"{label} ({score}/100)"
	if fb: text += ' - ' + ', '.join(fb)
	return score, text
