"""Error types raised by the DNS sinkhole"""


class SinkholeError(Exception):
    """Base class for all sinkhole errors"""

    pass


class ParseError(SinkholeError):
    """A datagram could not be decoded as a supported DNS query"""

    pass


class UnsupportedQuestionCount(ParseError):
    """The query does not carry exactly one question"""

    def __init__(self, count: int):
        super().__init__(f"Unsupported question count: {count}")
        self.count = count


class MalformedQuestion(ParseError):
    """The question section is truncated or uses an unsupported label form"""

    pass


class SourceUnavailable(SinkholeError):
    """A block list source could not be read"""

    def __init__(self, location: str, reason: str):
        super().__init__(f"Block list source {location} unavailable: {reason}")
        self.location = location
        self.reason = reason


class SendFailure(SinkholeError):
    """A datagram could not be written to its socket"""

    pass
