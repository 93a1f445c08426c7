# agenda-board: board and appointment logic for the scheduling admin panel
#
# Packages:
#   kanban/        - Columns, cards, move engine, stats, persistence backends
#   appointments/  - Appointment records and the status state machine
#   config.py      - YAML configuration, logging setup, backend wiring
