"""
Central constants for the Edulink task manager.
"""
from __future__ import annotations

# Task priorities, in display order. "Normal" is the form default.
PRIORITIES = ("Low", "Normal", "High")
DEFAULT_PRIORITY = "Normal"

# Workspace roles offered on the role panel after login.
WORKSPACE_ROLES = ("Student", "Lecturer", "Staff")

# Download name for the JSON export.
EXPORT_FILENAME = "Edulink_tasks.json"

THEMES = ("light", "dark")

# Column limits on the tasks table (String(255) title, BIGINT id).
TITLE_MAX_LENGTH = 255
MAX_TASK_ID = 2**63 - 1
