"""Battle royale domain errors.

Raised by the session manager and rendered as JSON by the app-level error
handler; socket handlers turn them into failed acknowledgements.
"""


class BattleRoyaleError(Exception):
    """Base class for all battle royale errors."""
    status_code = 500

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__ or 'Battle royale error'
        super().__init__(self.message)


class InvalidInput(BattleRoyaleError):
    """Invalid request data"""
    status_code = 400


class NotAuthorized(BattleRoyaleError):
    """Not allowed to perform this action"""
    status_code = 403


class SessionNotFound(BattleRoyaleError):
    """Session not found"""
    status_code = 404

    def __init__(self, code):
        self.code = code
        super().__init__(f"No session found with code {code}")


class SessionConflict(BattleRoyaleError):
    """Session state does not allow this action"""
    status_code = 409
