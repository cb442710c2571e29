"""
Migration Error Types

Fatal failures raised by the transfer pipeline. Each error carries the
table and phase it happened in so the operator knows where to restart.

Encoding violations and row count mismatches are deliberately absent:
they are reported as counts and WARN results, never raised.
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for fatal migration failures."""

    def __init__(self, message: str, table_name: Optional[str] = None, phase: Optional[str] = None):
        self.table_name = table_name
        self.phase = phase
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.table_name:
            context.append(f"table={self.table_name}")
        if self.phase:
            context.append(f"phase={self.phase}")
        if context:
            return f"{message} [{', '.join(context)}]"
        return message


class ConfigurationError(MigrationError):
    """Required configuration is missing or malformed."""

    def __init__(self, message: str, missing_keys: Optional[list] = None):
        self.missing_keys = list(missing_keys or [])
        super().__init__(message, phase="configuration")


class ConnectivityError(MigrationError):
    """Source or destination database cannot be reached."""


class SchemaLookupError(MigrationError):
    """Source table is missing or its metadata cannot be read."""


class DDLError(MigrationError):
    """Schema, table or sequence creation failed on the destination."""


class StreamError(MigrationError):
    """Reading from the source or writing the COPY stream failed mid-transfer."""


class VerificationError(MigrationError):
    """Row counts could not be read after the load."""
