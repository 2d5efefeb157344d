"""
Squeel: a local SQLite database as an application's single source of truth.

The database runs on a dedicated worker thread; callers talk to it through
correlated message envelopes, and live queries re-run when the tables they
read are changed locally or by a peer client of the same database.
"""

__version__ = "0.1.0"
