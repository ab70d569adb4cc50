"""Secret entry helpers (confirmation + strength advisory)."""
from __future__ import annotations
import logging
from .crypto import check_password_strength

log = logging.getLogger(__name__)

WEAK_SCORE = 40

class AuthError(Exception):
	pass

def confirm_secret(secret: str, confirmation: str) -> str:
	if not secret:
		raise AuthError('Empty password')
	if secret != confirmation:
		raise AuthError('Passwords do not match')
	if '\n' in secret or '\r' in secret:
		raise AuthError('Password must be a single line')
	return secret

def advise_strength(secret: str) -> int:
	"""Log a warning for weak secrets; never rejects."""
	score, feedback = check_password_strength(secret)
	if score < WEAK_SCORE:
		log.warning("Weak password: %s", feedback)
	return score
