# util/errors.py


class IceDemoError(Exception):
    """Base class for errors reported to the operator."""


class SequencingError(IceDemoError, RuntimeError):
    """Command is not valid in the current session state."""


class ParseError(IceDemoError, ValueError):
    """Remote session description could not be decoded."""


class CapacityError(IceDemoError, ValueError):
    """Encoded session description does not fit the output capacity."""


class EngineError(IceDemoError, RuntimeError):
    """Failure reported by the ICE engine."""
