"""
b2bsync: multi-tenant incremental synchronization of B2B entities.

The Flask application in ``app.py`` wires configuration, logging and the
canonical store; the engine itself lives in :mod:`b2bsync.sync`.
"""
