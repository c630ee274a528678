"""Game domain services: round scoring, letters, categories and the
session state machine.

Scoring is a pure function over a round snapshot so it can be exercised
without a database; the persistence of totals and the state transitions
live next to it and are called by HTTP routes and socket handlers.
"""
