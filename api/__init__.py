"""
API package for the performance-test manual input backend.

This package provides the REST API endpoints for:
- Manual input grids, validation and save (manual_input.py)
- Performance test records and tab names (performances.py)
- Settings and UI preferences (settings.py)
- System health, info and error log (system.py)

The plant backend is reached through backend_client.py; the grid logic
itself lives in shared/.
"""
