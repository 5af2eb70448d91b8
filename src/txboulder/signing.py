"""
JWS signing of ACME requests.
"""
import attr
from acme.jws import JWS
from josepy.b64 import b64decode, b64encode
from josepy.jwa import RS256
from zope.interface import implementer

from txboulder.errors import ProtocolError
from txboulder.interfaces import ISigner


@implementer(ISigner)
@attr.s(frozen=True)
class JWSSigner(object):
    """
    Signs payloads as a flattened JWS, with the nonce and the account's public
    key in the protected header.

    :param alg: The ``josepy`` signing algorithm; must suit the key type.
    """
    alg = attr.ib(default=RS256)

    def sign(self, key, nonce, payload):
        try:
            raw_nonce = b64decode(nonce)
        except (TypeError, ValueError):
            raise ProtocolError(u'Malformed nonce: {!r}'.format(nonce))
        return JWS.sign(
            payload=payload.json_dumps().encode('utf-8'),
            key=key,
            alg=self.alg,
            nonce=raw_nonce,
            )

    def thumbprint(self, key):
        """
        The Base64url RFC 7638 SHA-256 thumbprint of ``key``.
        """
        return b64encode(key.thumbprint()).decode('ascii')


__all__ = ['JWSSigner']
