# offers/errors.py
class OfferEngineError(Exception):
    """Base engine error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__

class SourceError(OfferEngineError):
    """A coordinator could not be fetched this cycle."""

    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.ctx = ctx

    def __str__(self):
        base = super().__str__()
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base

class MalformedPayloadError(SourceError):
    """Coordinator answered, but not with a listing collection."""

class NotifierError(OfferEngineError):
    """Sending a notification failed; the offer stays untracked."""

class StoreError(OfferEngineError):
    """Durable state could not be read or written."""

class ConfigError(OfferEngineError):
    """Invalid configuration value."""
