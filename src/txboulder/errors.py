"""
Exception types for txboulder.
"""
import attr


class ValidationError(ValueError):
    """
    A caller supplied an argument that can never produce a valid request.

    Raised synchronously, before any network access takes place.
    """


@attr.s(auto_exc=True)
class ProtocolError(Exception):
    """
    The authority answered, but not in a way the protocol allows us to
    continue with: an error response, a missing directory endpoint, a missing
    or malformed nonce.

    :ivar str message: A human readable description.
    :ivar int code: The HTTP status of the offending response, if any.
    :ivar body: The parsed error body sent by the authority, if any; an
        `acme.messages.Error` for problem documents.
    """
    message = attr.ib()
    code = attr.ib(default=None)
    body = attr.ib(default=None)

    def __str__(self):
        return self.message


@attr.s(auto_exc=True)
class NetworkError(Exception):
    """
    The exchange with the authority failed at the transport level, or the
    response could not be decoded.
    """
    message = attr.ib()
    url = attr.ib(default=None)

    def __str__(self):
        if self.url is None:
            return self.message
        return u'{} ({})'.format(self.message, self.url)


__all__ = ['NetworkError', 'ProtocolError', 'ValidationError']
