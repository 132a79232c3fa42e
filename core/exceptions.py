"""
Custom exceptions for Gemini Chat Exporter
"""
from typing import Optional, Any, Dict


class ChatExporterError(Exception):
    """Base exception for Gemini Chat Exporter"""

    def __init__(self, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.component = component
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ChatExporterError):
    """Configuration errors"""
    pass


class AlreadyRunningError(ChatExporterError):
    """A batch export was requested while another one is active"""

    code = "AlreadyRunning"

    def __init__(self, message: str = "A batch export is already running", **kwargs):
        super().__init__(message, component="orchestrator", **kwargs)


class SpawnError(ChatExporterError):
    """Worker page could not be created"""

    def __init__(self, message: str, job_id: Optional[str] = None, **kwargs):
        self.job_id = job_id
        super().__init__(message, component="spawner", **kwargs)


class SignalError(ChatExporterError):
    """Malformed or unexpected worker signal"""
    pass


class DownloadError(ChatExporterError):
    """Download related errors"""
    pass


class ExtractionError(ChatExporterError):
    """Conversation extraction errors"""

    def __init__(self, message: str, job_id: Optional[str] = None, **kwargs):
        self.job_id = job_id
        super().__init__(message, component="extractor", **kwargs)


class StorageError(ChatExporterError):
    """Storage related errors"""
    pass
