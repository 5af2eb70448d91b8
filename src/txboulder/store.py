"""
``txboulder.interfaces.IJSONStore`` implementations.
"""
import json

import attr
from twisted.internet.defer import maybeDeferred, succeed
from twisted.logger import Logger
from zope.interface import implementer

from txboulder.interfaces import IJSONStore


@attr.s
@implementer(IJSONStore)
class JSONStore(object):
    """
    A store that keeps each document in a ``<name>.json`` file of a
    directory.
    """
    path = attr.ib(converter=lambda p: p.asTextMode())

    _log = Logger()

    def _child(self, name):
        return self.path.child(name + u'.json')

    def _read(self, name):
        """
        Synchronously retrieve a document.
        """
        if not name:
            self._log.warn('No document name given')
            return None
        p = self._child(name)
        if not p.isfile():
            self._log.warn(
                'No stored document {name!r} in {path}',
                name=name, path=self.path.path)
            return None
        try:
            return json.loads(p.getContent().decode('utf-8'))
        except (IOError, UnicodeDecodeError, ValueError) as e:
            self._log.warn(
                'Cannot read stored document {name!r}: {error}',
                name=name, error=e)
            return None

    def read(self, name):
        return maybeDeferred(self._read, name)

    def write(self, name, obj):
        if not self.path.isdir():
            self.path.makedirs()
        self._child(name).setContent(
            json.dumps(obj, indent=2, sort_keys=True).encode('utf-8'))
        return succeed(obj)


__all__ = ['JSONStore']
