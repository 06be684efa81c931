class DuelError(Exception):
    """Base class for duel failures surfaced to the player."""

    status_code = 400
    message = 'Duel error'

    def __init__(self, message=None):
        super().__init__(message or self.message)

    def to_dict(self):
        return {'error': str(self)}


class InsufficientFunds(DuelError):
    status_code = 402
    message = 'Not enough LP for this stake'


class ChallengeNotFound(DuelError):
    status_code = 404
    message = 'Challenge not found'


class ChallengeFull(DuelError):
    status_code = 409
    message = 'This challenge already has two players'


class ChallengeNotActive(DuelError):
    status_code = 409
    message = 'This challenge is not accepting scores'


class ChallengeStillRunning(DuelError):
    status_code = 409
    message = 'The round has not finished yet'


class NotAParticipant(DuelError):
    status_code = 403
    message = 'You are not a player in this challenge'


class WriteFailed(DuelError):
    status_code = 503
    message = 'Could not save the duel, try again'
