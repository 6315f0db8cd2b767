"""Custom exceptions for Relational MCP Server."""


class RelationalToolkitError(Exception):
    """Base exception for Relational MCP Server errors."""

    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


# Error tiers

class ValidationError(RelationalToolkitError):
    """Raised when caller input is malformed. Nothing has touched the database yet."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(message, error_code)


class SecurityError(RelationalToolkitError):
    """Raised when a statement is rejected before it reaches the driver."""

    def __init__(self, message: str, error_code: str = "SECURITY_ERROR"):
        super().__init__(message, error_code)


class ConfigurationError(RelationalToolkitError):
    """Raised when configuration is invalid or a dependency is missing."""

    def __init__(self, message: str, error_code: str = "CONFIGURATION_ERROR"):
        super().__init__(message, error_code)


class DomainError(RelationalToolkitError):
    """Raised when a statement ran but violated a business or schema rule."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR"):
        super().__init__(message, error_code)


class InfrastructureError(RelationalToolkitError):
    """Raised when the database or the connection to it fails."""

    def __init__(self, message: str, error_code: str = "INFRASTRUCTURE_ERROR"):
        super().__init__(message, error_code)


# Validation errors

class InvalidIdentifierError(ValidationError):
    """Raised when a table or column name is not a safe SQL identifier."""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_IDENTIFIER")


class InvalidConditionError(ValidationError):
    """Raised when a WHERE condition is malformed."""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_CONDITION")


class QueryValidationError(ValidationError):
    """Raised when a structured query request is invalid."""

    def __init__(self, message: str):
        super().__init__(message, "QUERY_VALIDATION_ERROR")


class SchemaImportError(ValidationError):
    """Raised when a serialized schema snapshot is malformed."""

    def __init__(self, message: str):
        super().__init__(message, "SCHEMA_IMPORT_ERROR")


# Security errors

class EmptyQueryError(SecurityError):
    """Raised when a SQL string is blank."""

    def __init__(self, message: str = "SQL query must not be empty"):
        super().__init__(message, "EMPTY_QUERY")


class NullByteError(SecurityError):
    """Raised when a SQL string contains a null byte."""

    def __init__(self, message: str = "SQL query contains null bytes"):
        super().__init__(message, "NULL_BYTE")


class DangerousOperationError(SecurityError):
    """Raised when a SQL string contains a destructive DDL keyword."""

    def __init__(
        self,
        message: str = "Detected dangerous SQL operation. CREATE, DROP, TRUNCATE, and ALTER are not allowed.",
    ):
        super().__init__(message, "DANGEROUS_OPERATION")


class MissingParametersError(SecurityError):
    """Raised when a SQL string has placeholders but no parameters were supplied."""

    def __init__(
        self,
        message: str = "Missing parameters: SQL query contains placeholders but no params were provided",
    ):
        super().__init__(message, "MISSING_PARAMETERS")


class ParametersRequiredForMutationError(SecurityError):
    """Raised when an INSERT/UPDATE/DELETE is submitted without bound parameters."""

    def __init__(
        self,
        message: str = (
            "Parameters are required for INSERT/UPDATE/DELETE queries. "
            "Use parameterized placeholders instead of embedding values directly."
        ),
    ):
        super().__init__(message, "PARAMETERS_REQUIRED_FOR_MUTATION")


# Configuration errors

class MissingDriverError(ConfigurationError):
    """Raised when the client library for a vendor is not installed."""

    def __init__(self, message: str):
        super().__init__(message, "MISSING_DRIVER")


# Domain errors

class OptimisticLockFailedError(DomainError):
    """Raised when an optimistic-lock UPDATE matched no rows."""

    def __init__(self, message: str = "Update failed: optimistic lock check failed."):
        super().__init__(message, "OPTIMISTIC_LOCK_FAILED")


class ConstraintViolationError(DomainError):
    """Raised when a statement violated a unique, foreign key or NOT NULL constraint."""

    def __init__(self, message: str):
        super().__init__(message, "CONSTRAINT_VIOLATION")


# Infrastructure errors

class DatabaseConnectionError(InfrastructureError):
    """Raised when database connection fails."""

    def __init__(self, message: str):
        super().__init__(message, "DATABASE_CONNECTION_ERROR")


class NotConnectedError(InfrastructureError):
    """Raised when a statement is executed on a manager that is not connected."""

    def __init__(self, message: str = "Database not connected. Call connect() first."):
        super().__init__(message, "NOT_CONNECTED")


class QueryExecutionError(InfrastructureError):
    """Raised when query execution fails."""

    def __init__(self, message: str):
        super().__init__(message, "QUERY_EXECUTION_ERROR")


class TransactionError(InfrastructureError):
    """Raised when a transaction is used after it finished or was cancelled."""

    def __init__(self, message: str, error_code: str = "TRANSACTION_ERROR"):
        super().__init__(message, error_code)


class QueryTimeoutError(TransactionError):
    """Raised when a transaction exceeds its time budget."""

    def __init__(self, message: str):
        super().__init__(message, "QUERY_TIMEOUT_ERROR")
