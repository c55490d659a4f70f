"""
Tasks module.

Scope:
- Personal task list (add / edit / delete / mark done), one owner per task
- Search over title, due date and priority; list sorted by due date
- Summary + progress, upcoming panel, due-today reminders
- JSON export/import (import appends, deduplicating by task id)
"""
