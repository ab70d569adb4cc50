"""Project configuration settings.

Constants shared by the vault operations and the hooks. Values that an
operator may need to tune per machine can be overridden from the environment.
"""

import os

# Layout (relative to the repository root)
VAULT_DIR_NAME = ".git-vault"
MANIFEST_NAME = "paths.list"
STORAGE_DIR_NAME = "storage"
ARCHIVE_EXTENSION = ".tar.gz.enc"
ARCHIVE_JOINER = "-"
GITIGNORE_NAME = ".gitignore"
GITATTRIBUTES_NAME = ".gitattributes"

# Password artifacts (inside the vault directory)
PASSWORD_PREFIX = "git-vault-"
PASSWORD_SUFFIX = ".pw"
MARKER_SUFFIX = ".pw.1p"
RETIRED_SUFFIX = ".removed"

# Per-repository config files (inside the vault directory)
STORAGE_MODE_FILE = "storage-mode"
LFS_CONFIG_FILE = "lfs-config"
OP_VAULT_FILE = "1password-vault"

STORAGE_MODES = ("file", "1password")
DEFAULT_STORAGE_MODE = "file"
DEFAULT_LFS_THRESHOLD_MB = 5
DEFAULT_OP_VAULT = "Git-Vault"
OP_ITEM_PREFIX = "git-vault"
OP_TIMEOUT = float(os.environ.get("GIT_VAULT_OP_TIMEOUT", "30"))

# Security / crypto
DEFAULT_ITERATIONS = 100_000
SALT_LENGTH = 16
KEY_LENGTH = 32  # AES-256
NONCE_LENGTH = 12
NONCE_PREFIX_LENGTH = 7
AUTH_TAG_LENGTH = 16  # GCM tag length
CHUNK_SIZE = 64 * 1024
ID_LENGTH = 8

# Hooks
HOOK_NAMES = {"pre-commit": "encrypt", "post-checkout": "decrypt", "post-merge": "decrypt"}

# Logging
LOG_LEVEL = os.environ.get("GIT_VAULT_LOG_LEVEL", "INFO")

__all__ = [
	'VAULT_DIR_NAME','MANIFEST_NAME','STORAGE_DIR_NAME','ARCHIVE_EXTENSION','ARCHIVE_JOINER',
	'GITIGNORE_NAME','GITATTRIBUTES_NAME','PASSWORD_PREFIX','PASSWORD_SUFFIX','MARKER_SUFFIX',
	'RETIRED_SUFFIX','STORAGE_MODE_FILE','LFS_CONFIG_FILE','OP_VAULT_FILE','STORAGE_MODES',
	'DEFAULT_STORAGE_MODE','DEFAULT_LFS_THRESHOLD_MB','DEFAULT_OP_VAULT','OP_ITEM_PREFIX','OP_TIMEOUT',
	'DEFAULT_ITERATIONS','SALT_LENGTH','KEY_LENGTH','NONCE_LENGTH','NONCE_PREFIX_LENGTH',
	'AUTH_TAG_LENGTH','CHUNK_SIZE','ID_LENGTH','HOOK_NAMES','LOG_LEVEL'
]
