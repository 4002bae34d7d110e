# Sync/exceptions.py

class SyncError(Exception):
    """Base exception for the sync engine."""
    pass

class SyncConfigurationError(SyncError):
    """Sync was requested but no remote service is configured."""
    pass

class TransportError(SyncError):
    """Represents an error talking to the remote service (upsert/delete/select)."""
    def __init__(self, message, status_code=None, table=None, *args):
        super().__init__(message, *args)
        self.status_code = status_code
        self.table = table

    def __str__(self):
        base = super().__str__()
        details = []
        if self.table: details.append(f"Table: {self.table}")
        if self.status_code: details.append(f"Status: {self.status_code}")
        return f"{base} ({', '.join(details)})" if details else base

class ApplyError(SyncError):
    """Represents an error uploading or applying one record."""
    def __init__(self, message, table=None, record_id=None, *args):
        super().__init__(message, *args)
        self.table = table
        self.record_id = record_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.table: details.append(f"Table: {self.table}")
        if self.record_id: details.append(f"RecordID: {self.record_id}")
        return f"{base} ({', '.join(details)})" if details else base

class StateError(SyncError):
    """Represents an error reading/writing sync state."""
    pass
