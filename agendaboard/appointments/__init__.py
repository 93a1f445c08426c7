# Appointments: booked service slots and their status lifecycle
#
# Components:
#   schema.py - Appointment, AppointmentStatus, transition table
#   book.py   - AppointmentBook: in-memory collection enforcing transitions
