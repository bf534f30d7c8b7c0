"""
Git sync -- the encrypted state set, pushed and pulled as opaque blobs.

Git never sees plaintext and never merges a ciphertext line by line.
Conflicts resolve whole-file: ours by default, theirs on request.
"""

from .engine import SyncEngine
from .git import GitClient

__all__ = ["SyncEngine", "GitClient"]
