class ScoringError(Exception):
    status_code = 400
    default_message = 'Scoring operation failed.'

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        payload = {'success': False, 'message': self.message, 'error': type(self).__name__}
        payload.update(self.details)
        return payload


class ValidationError(ScoringError):
    status_code = 400
    default_message = 'Invalid score submission.'

    def __init__(self, message=None, criteria_id=None, **details):
        if criteria_id is not None:
            details['criteria_id'] = criteria_id
        super().__init__(message, **details)
        self.criteria_id = criteria_id


class LockedError(ScoringError):
    status_code = 409
    default_message = 'Scores already submitted. Ask an admin to unlock.'


class AlreadyLockedError(ScoringError):
    status_code = 409
    default_message = 'Submission is already locked.'


class NotFoundError(ScoringError):
    status_code = 404
    default_message = 'Not found.'


class PermissionDenied(ScoringError):
    status_code = 403
    default_message = 'Admin access required.'
