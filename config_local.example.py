# config_local.example.py

"""
Example local overrides.

Usage:
  1) Copy this file to `config_local.py`
  2) Adjust values for your machine
  3) Never commit `config_local.py` (it is gitignored)

Prefer `.env` for secrets. This file should contain only safe overrides.
Only the switches below are read from it.
"""

# Example: run only the console, without background work
# SCHEDULER_ENABLED = False
# CRON_ENABLED = False

# Example: headless (scheduler + cron only)
# CONSOLE_ENABLED = False
