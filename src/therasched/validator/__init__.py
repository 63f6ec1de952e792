from therasched.validator.validator import Booking, SessionValidator, validate_sessions

__all__ = ["Booking", "SessionValidator", "validate_sessions"]
