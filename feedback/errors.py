class FeedbackError(Exception):
    status_code = 500


class NotFoundError(FeedbackError):
    status_code = 404


class ValidationError(FeedbackError):
    status_code = 400


class ForbiddenError(FeedbackError):
    status_code = 403


class ConflictError(FeedbackError):
    status_code = 409


class InfrastructureError(FeedbackError):
    status_code = 503


class StoreError(InfrastructureError):
    pass


class MailError(InfrastructureError):
    pass
