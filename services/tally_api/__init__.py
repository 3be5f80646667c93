"""
Live election tally service.

This package contains:
- config: environment-driven settings
- database: PostgreSQL counter store (positions, candidates, tallies)
- csv_import: candidate CSV parsing and merge/replace reconciliation
- overview: nested positions/candidates/counts projection
- main: FastAPI application serving the API and the static dashboards
"""

__version__ = '1.0.0'
