"""
nakes: resolve packages into a persisted dependency graph.

The package is split the same way as the service it backs:
* ``domain``: pydantic models and input validation.
* ``storage``: the lockfile store (SQLite via aiosqlite).
* ``services``: the registry client and the resolver.
* ``api`` / ``main``: optional HTTP surface; ``cli``: command line.
"""

__version__ = "0.1.0"
