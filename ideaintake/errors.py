class IntakeError(Exception):
    pass


class NotFoundError(IntakeError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class AuthorizationError(IntakeError):
    pass


class ConflictError(IntakeError):
    pass
