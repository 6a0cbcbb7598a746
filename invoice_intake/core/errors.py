"""
Error taxonomy for the intake pipeline.

Fatal errors (ConfigurationError, AuthError) end a whole scan.
Everything else is caught per candidate and folded into the summary.
"""


class IntakeError(Exception):
    """Base class for all intake errors"""


class ConfigurationError(IntakeError):
    """Required configuration is missing; raised before any candidate is touched"""


class AuthError(IntakeError):
    """No stored credential, or refreshing it failed"""


class AnalysisRejection(IntakeError):
    """Document is not an invoice, failed validation, or the model output was malformed"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TransientRemoteError(IntakeError):
    """A remote call failed for one candidate"""


class RemoteServiceError(TransientRemoteError):
    """A Google REST API answered with a non-2xx status"""

    def __init__(self, service: str, status_code: int, message: str):
        super().__init__(f"{service} API error (HTTP {status_code}): {message}")
        self.service = service
        self.status_code = status_code
        self.message = message
