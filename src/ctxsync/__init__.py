"""
ctx-sync -- encrypted development context, everywhere.

Projects, env vars, docker services and task notes travel between
machines as ciphertext. Git is only the pipe.
"""

__version__ = "0.1.0"
__author__ = "ctx-sync contributors"

MANIFEST_VERSION = __version__
