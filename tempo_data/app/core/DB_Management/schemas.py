# schemas.py
# Description: Application table declarations, in migration/sync order.
#
# Imports
from typing import Dict, List
#
# Local Imports
from tempo_data.app.core.DB_Management.schema import ColumnType, TableSchema, table
#
#######################################################################################################################
#
# Tables:

POMODORO_SESSIONS = table("pomodoro_sessions", lambda t: (
    t.column("session_date", ColumnType.DATE, not_null=True)
     .column("session_number", ColumnType.INTEGER, not_null=True)
     .column("status", ColumnType.TEXT, not_null=True, default="active")
     .column("planned_duration", ColumnType.INTEGER, not_null=True)
     .column("actual_duration", ColumnType.INTEGER, default=0)
     .column("pause_count", ColumnType.INTEGER, default=0)
     .column("total_pause_duration", ColumnType.INTEGER, default=0)
     .column("started_at", ColumnType.TIMESTAMP, not_null=True)
     .column("completed_at", ColumnType.TIMESTAMP)
     .column("efficiency_score", ColumnType.REAL, default=0)
     .index(["session_date"])
     .index(["status"])
))

POMODORO_LOG = table("pomodoro_log", lambda t: (
    t.column("log_date", ColumnType.DATE, not_null=True, unique=True)
     .column("work_sessions", ColumnType.INTEGER, default=0)
     .column("total_work_time", ColumnType.INTEGER, default=0)
     .column("target_sessions", ColumnType.INTEGER, not_null=True)
     .column("focus_score", ColumnType.REAL, default=0)
     .column("daily_notes", ColumnType.TEXT)
     .column("average_efficiency", ColumnType.REAL, default=0)
     .column("total_pause_count", ColumnType.INTEGER, default=0)
     .column("completion_rate", ColumnType.REAL, default=0)
     .index(["log_date"], unique=True)
     .index(["focus_score"])
))

# last_streak_date is a calendar date (YYYY-MM-DD), never an epoch timestamp.
POMODORO_STREAK = table("pomodoro_streak", lambda t: (
    t.column("current_streak", ColumnType.INTEGER, default=0)
     .column("best_streak", ColumnType.INTEGER, default=0)
     .column("last_streak_date", ColumnType.DATE)
     .column("total_days_logged", ColumnType.INTEGER, default=0)
))

APP_SETTINGS = table("app_settings", lambda t: (
    t.column("work_session_duration", ColumnType.INTEGER, default=25)
     .column("daily_target_sessions", ColumnType.INTEGER, default=8)
     .column("short_break_duration", ColumnType.INTEGER, default=5)
     .column("long_break_duration", ColumnType.INTEGER, default=15)
     .column("sessions_before_long_break", ColumnType.INTEGER, default=4)
))

# Insertion order is registry order.
SCHEMA_REGISTRY: Dict[str, TableSchema] = {
    schema.name: schema
    for schema in (POMODORO_SESSIONS, POMODORO_LOG, POMODORO_STREAK, APP_SETTINGS)
}

TABLE_NAMES: List[str] = list(SCHEMA_REGISTRY.keys())

#
# End of schemas.py
#######################################################################################################################
