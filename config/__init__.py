"""Configuration settings and constants for git-vault.

The constants live in `config.settings`; they are re-exported here so that
`from config import VAULT_DIR_NAME` keeps working.
"""

from .settings import *  # noqa: F401,F403
from .settings import __all__  # noqa: F401
