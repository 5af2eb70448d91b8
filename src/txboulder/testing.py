"""
Utilities for testing with txboulder.
"""
import attr
from twisted.internet.defer import succeed
from zope.interface import implementer

from txboulder.interfaces import IJSONStore, IResponder, ISigner


@implementer(IResponder)
@attr.s
class NullResponder(object):
    """
    A responder that does absolutely nothing.
    """
    challenge_type = attr.ib()

    def start_responding(self, server_name, challenge):
        pass

    def stop_responding(self, server_name, challenge):
        pass


@implementer(ISigner)
@attr.s
class FakeSigner(object):
    """
    A signer producing readable, unsigned envelopes: the payload JSON and
    the nonce it was given.

    :ivar str key_thumbprint: What ``thumbprint`` returns, for any key.
    :ivar list signed: ``(nonce, payload)`` of every signed message.
    """
    key_thumbprint = attr.ib(default=u'thumbprint')
    signed = attr.ib(default=attr.Factory(list))

    def sign(self, key, nonce, payload):
        self.signed.append((nonce, payload))
        return {u'payload': payload.to_json(), u'nonce': nonce}

    def thumbprint(self, key):
        return self.key_thumbprint


@implementer(IJSONStore)
class MemoryStore(object):
    """
    A JSON store that keeps documents in memory only.
    """
    def __init__(self, documents=None):
        if documents is None:
            self._store = {}
        else:
            self._store = dict(documents)

    def read(self, name):
        return succeed(self._store.get(name))

    def write(self, name, obj):
        self._store[name] = obj
        return succeed(obj)


__all__ = ['FakeSigner', 'MemoryStore', 'NullResponder']
