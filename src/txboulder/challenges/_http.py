"""
``http-01`` challenge implementation.
"""
from collections.abc import Mapping

from twisted.internet.endpoints import TCP4ServerEndpoint
from twisted.web.resource import NoResource, Resource
from twisted.web.server import Site
from twisted.web.static import Data
from zope.interface import implementer

from txboulder.errors import ValidationError
from txboulder.interfaces import IResponder
from txboulder.util import fields_present


class _ChallengeResource(Resource):
    """
    Serves the key authorizations of a responder, by token, for the host
    they were registered for only.
    """
    def __init__(self, responses):
        Resource.__init__(self)
        self._responses = responses

    def getChild(self, path, request):
        host = request.getRequestHostname().decode('ascii', 'replace')
        token = path.decode('ascii', 'replace')
        key_authorization = self._responses.get((host.lower(), token))
        if key_authorization is None:
            return NoResource()
        return Data(key_authorization.encode('utf-8'), 'text/plain')


def _challenge_key(server_name, challenge):
    if not isinstance(challenge, Mapping) or not fields_present(
            [u'type', u'token', u'keyAuthorization'], challenge):
        raise ValidationError('Mal-formed challenge')
    if challenge[u'type'] != HTTP01Responder.challenge_type:
        raise ValidationError('Mal-formed challenge')
    return (server_name.lower(), challenge[u'token'])


@implementer(IResponder)
class HTTP01Responder(object):
    """
    An ``http-01`` challenge responder.

    ``resource`` is meant to be served at ``/.well-known/acme-challenge/``;
    `listen_http01` does exactly that.
    """
    challenge_type = u'http-01'

    def __init__(self):
        self._responses = {}
        self.resource = _ChallengeResource(self._responses)

    def start_responding(self, server_name, challenge):
        """
        Serve the key authorization of ``challenge`` to requests for
        ``server_name``.
        """
        key = _challenge_key(server_name, challenge)
        self._responses[key] = challenge[u'keyAuthorization']

    def stop_responding(self, server_name, challenge):
        """
        Stop serving the key authorization.
        """
        self._responses.pop(_challenge_key(server_name, challenge), None)


def listen_http01(reactor, responder, port=80, interface=''):
    """
    Serve an `HTTP01Responder` over plain HTTP.

    :rtype: Deferred[twisted.internet.interfaces.IListeningPort]
    """
    well_known = Resource()
    well_known.putChild(b'acme-challenge', responder.resource)
    root = Resource()
    root.putChild(b'.well-known', well_known)
    endpoint = TCP4ServerEndpoint(reactor, port, interface=interface)
    return endpoint.listen(Site(root))


__all__ = ['HTTP01Responder', 'listen_http01']
