# Kanban board: per-tenant columns and cards with WIP-limited moves
#
# Components:
#   schema.py  - Data model (Column, Card, Priority, CardPlacement, CardMovement, CardComment)
#   errors.py  - Error taxonomy surfaced to callers
#   moves.py   - Pure move planner (validation, clamping, renumbering)
#   board.py   - BoardStore: in-memory board with optimistic commit + rollback
#   stats.py   - Per-column statistics derived on read
#   events.py  - Board-changed notifications for subscribers
#   backend.py - Persistence interface (BoardBackend, BoardChanges)
#   store.py   - SQLite persistence backend
#   rest.py    - PostgREST (HTTP) persistence backend
