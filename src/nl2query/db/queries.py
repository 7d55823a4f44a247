"""Catalog queries used by the health check and schema introspection."""

HEALTHCHECK_QUERY = """
SELECT
  current_database() AS current_database,
  current_user AS current_user,
  current_setting('server_version') AS server_version,
  current_setting('transaction_read_only') AS transaction_read_only,
  current_setting('statement_timeout') AS statement_timeout
"""

# One row per column of every table, view, materialized view and partitioned
# table in the requested namespaces, flagged when part of the primary key.
RELATION_COLUMNS_QUERY = """
SELECT
  n.nspname AS schema_name,
  c.relname AS relation_name,
  a.attname AS column_name,
  pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
  (pk.indexrelid IS NOT NULL) AS is_primary_key
FROM pg_catalog.pg_attribute AS a
JOIN pg_catalog.pg_class AS c ON c.oid = a.attrelid
JOIN pg_catalog.pg_namespace AS n ON n.oid = c.relnamespace
LEFT JOIN pg_catalog.pg_index AS pk
  ON pk.indrelid = c.oid
  AND pk.indisprimary
  AND a.attnum = ANY(pk.indkey)
WHERE n.nspname = ANY(%(schemas)s)
  AND c.relkind IN ('r', 'v', 'm', 'p')
  AND a.attnum > 0
  AND NOT a.attisdropped
ORDER BY n.nspname, c.relname, a.attnum
"""
