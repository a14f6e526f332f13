from .controller import SessionController, SessionPhase

__all__ = ["SessionController", "SessionPhase"]
