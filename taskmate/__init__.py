# TaskMate: personal kanban boards, task lifecycle, and cleanup of stale done tasks
#
# Components:
#   config.py   - YAML + environment configuration
#   errors.py   - Validation / authorization / database error taxonomy
#   schema.py   - Data model (User, Board, Task, Tag, ...) and row mapping
#   database.py - SQLite connections, retrying query helper, transactions
#   sessions.py - Session repositories (in-memory, Redis) with TTL
#   auth.py     - Password hashing, registration, login, session lookup
#   store.py    - Board/task/tag CRUD and the board-move lifecycle
#   cleanup.py  - Sweep of done tasks past the retention window
#   filters.py  - In-memory task filtering and sorting
#   state.py    - Client-side board state with optimistic commands
#   client.py   - HTTP client for the TaskMate JSON API
