"""Data sources and read-only query execution.

Stored queries run against the site database and stream their rows into the
CSV serializer, so every source hands back a cursor instead of a frame.

Sources supported:
  - DuckDB   : a local database file opened read-only (default)
  - Postgres : the Moodle database via psycopg2 server-side cursors
"""
