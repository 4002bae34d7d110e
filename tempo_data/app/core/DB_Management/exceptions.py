# exceptions.py
# Description: Exception hierarchy for the local store (schema, constraints, backends)
#
# Imports
from typing import Any, Optional
#
#######################################################################################################################
#
# Classes:


class DatabaseError(Exception):
    """Base exception for local store errors."""
    pass


class SchemaError(DatabaseError):
    """Invalid schema declaration or a migration step that could not be applied."""
    pass


class SchemaObjectExistsError(DatabaseError):
    """A table, column or index the statement tried to create is already present."""
    pass


class BackendError(DatabaseError):
    """Backend could not be selected, opened or used."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConstraintError(DatabaseError):
    """A write violated a unique, not-null or primary key constraint."""

    def __init__(self, message="Constraint violation.", table: Optional[str] = None, record_id: Any = None):
        super().__init__(message)
        self.table = table
        self.record_id = record_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.table:
            details.append(f"Table: {self.table}")
        if self.record_id:
            details.append(f"ID: {self.record_id}")
        return f"{base} ({', '.join(details)})" if details else base

#
# End of exceptions.py
#######################################################################################################################
