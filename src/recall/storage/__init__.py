"""
Storage module - concrete backends for the engine's external collaborators.

- database: shared aiosqlite connection and schema
- cache: TTL key-value cache (session snapshots, message window, debounce keys)
- queue: durable delayed-job queue with retry/backoff
- sessions: session -> user/folder directory

Storage: SQLite
"""
