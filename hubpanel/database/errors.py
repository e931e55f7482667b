"""
Error taxonomy shared by drivers, services and the HTTP layer
"""


class HubPanelError(Exception):
    """Base class for errors reported back to the caller"""
    category = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'category': self.category}


class NotConfiguredError(HubPanelError):
    """Requested database name is in neither config source"""
    category = "not_configured"

    def __init__(self, name: str):
        super().__init__(f'Database "{name}" is not configured.')
        self.name = name


class DatabaseConnectionError(HubPanelError):
    """Engine unreachable or credentials rejected"""
    category = "connection"


class QueryError(HubPanelError):
    """Statement rejected by the engine"""
    category = "query"


class NotEditableError(HubPanelError):
    """Row mutation on a table without a primary key"""
    category = "not_editable"


class InvalidRequestError(HubPanelError):
    category = "invalid_request"


class NotFoundError(HubPanelError):
    category = "not_found"


class ConflictError(HubPanelError):
    category = "conflict"


class ForbiddenError(HubPanelError):
    category = "forbidden"


class ConnectionTestError(HubPanelError):
    """A connection failed its test and was not saved"""
    category = "connection_test"

    def __init__(self, message: str, details: str, latency_ms: float):
        super().__init__(message)
        self.details = details
        self.latency_ms = latency_ms

    def to_dict(self):
        data = super().to_dict()
        data['details'] = self.details
        data['latencyMs'] = self.latency_ms
        return data
