"""
Custom exceptions for the habit engine.
Provides specific exception types for better error handling and recovery.
"""


class HabitEngineException(Exception):
    """Base exception for habit engine"""
    pass


class TaskNotFoundException(HabitEngineException):
    """Raised when a task is not found"""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task with ID {task_id} not found")


class DatabaseException(HabitEngineException):
    """Raised when database operations fail"""
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database {operation} failed: {details}")


class ValidationException(HabitEngineException):
    """Raised when data validation fails"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for {field}: {message}")
