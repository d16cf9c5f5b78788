"""Failure taxonomy for the game engine.

Every error is a local validation failure raised before anything is
committed. ``status_code`` is what the router hands back to the client.
"""


class WordQuestError(Exception):
    status_code: int = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidRequest(WordQuestError):
    pass


class InsufficientWords(WordQuestError):
    pass


class InvalidGameType(WordQuestError):
    pass


class SessionNotActive(WordQuestError):
    pass


class InvalidQuestionIndex(WordQuestError):
    pass


class AnswerAlreadySubmitted(WordQuestError):
    pass


class InvalidStatusTransition(WordQuestError):
    pass


class TaskAlreadyCompleted(WordQuestError):
    pass


class Unauthorized(WordQuestError):
    status_code = 403


class StudentNotAssigned(WordQuestError):
    status_code = 403


class NotFound(WordQuestError):
    status_code = 404


class UserNotFound(NotFound):
    pass


class WordNotFound(NotFound):
    pass


class SessionNotFound(NotFound):
    pass


class TaskNotFound(NotFound):
    pass
