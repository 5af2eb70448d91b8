"""
Tests for `txboulder.challenges`.
"""
from treq.testing import StubTreq
from twisted.internet.testing import MemoryReactor
from twisted.python.url import URL
from twisted.trial.unittest import TestCase
from twisted.web.resource import Resource
from twisted.web.server import Site
from zope.interface.verify import verifyObject

from txboulder.challenges import HTTP01Responder, listen_http01
from txboulder.errors import ValidationError
from txboulder.interfaces import IResponder
from txboulder.testing import NullResponder


# A random example token for the challenge tests that need one
EXAMPLE_TOKEN = u'BWYcfxzmOha7-7LoxziqPZIUr99BCz3BfbN9kzSFnrU'

EXAMPLE_CHALLENGE = {
    u'type': u'http-01',
    u'token': EXAMPLE_TOKEN,
    u'uri': u'https://boulder.example/acme/challenge/1',
    u'keyAuthorization': EXAMPLE_TOKEN + u'.thumbprint',
    }


class HTTPResponderTests(TestCase):
    """
    `.HTTP01Responder` is a responder for http-01 challenges.
    """
    def setUp(self):
        self.responder = HTTP01Responder()
        challenge_resource = Resource()
        challenge_resource.putChild(b'acme-challenge', self.responder.resource)
        root = Resource()
        root.putChild(b'.well-known', challenge_resource)
        self.client = StubTreq(root)

    def fetch(self, host, token=EXAMPLE_TOKEN):
        url = URL(scheme=u'http', host=host, path=[
            u'.well-known', u'acme-challenge', token]).asText()
        return self.successResultOf(
            self.client.get(url, headers={b'host': [host.encode('ascii')]}))

    def test_interface(self):
        """
        The `.IResponder` interface is correctly implemented.
        """
        verifyObject(IResponder, self.responder)
        self.assertEqual(u'http-01', self.responder.challenge_type)
        verifyObject(IResponder, NullResponder(u'http-01'))

    def test_stop_responding_already_stopped(self):
        """
        Calling ``stop_responding`` when we are not responding for a server
        name does nothing.
        """
        self.responder.stop_responding(u'example.com', EXAMPLE_CHALLENGE)

    def test_start_responding(self):
        """
        Calling ``start_responding`` makes an appropriate resource available.
        """
        # We got page not found while the challenge is not yet active.
        self.assertEqual(404, self.fetch(u'example.com').code)

        # Once we enable the response.
        self.responder.start_responding(u'example.com', EXAMPLE_CHALLENGE)
        response = self.fetch(u'example.com')
        self.assertEqual(200, response.code)
        self.assertEqual(
            [b'text/plain'], response.headers.getRawHeaders(b'content-type'))
        self.assertEqual(
            EXAMPLE_CHALLENGE[u'keyAuthorization'].encode('utf-8'),
            self.successResultOf(response.content()))

        # Starting twice before stopping doesn't break things
        self.responder.start_responding(u'example.com', EXAMPLE_CHALLENGE)
        self.assertEqual(200, self.fetch(u'example.com').code)

        self.responder.stop_responding(u'example.com', EXAMPLE_CHALLENGE)
        self.assertEqual(404, self.fetch(u'example.com').code)

    def test_other_host(self):
        """
        The key authorization is only served for the server name it was
        started for.
        """
        self.responder.start_responding(u'example.com', EXAMPLE_CHALLENGE)
        self.assertEqual(404, self.fetch(u'example.org').code)
        self.assertEqual(200, self.fetch(u'EXAMPLE.com').code)

    def test_other_token(self):
        self.responder.start_responding(u'example.com', EXAMPLE_CHALLENGE)
        self.assertEqual(404, self.fetch(u'example.com', u'other').code)

    def test_malformed(self):
        """
        Challenges of another type, or missing fields, are rejected.
        """
        for challenge in [
                dict(EXAMPLE_CHALLENGE, type=u'dns-01'),
                {u'type': u'http-01', u'token': EXAMPLE_TOKEN},
                None]:
            with self.assertRaises(ValidationError) as e:
                self.responder.start_responding(u'example.com', challenge)
            self.assertEqual('Mal-formed challenge', str(e.exception))


class ListenTests(TestCase):
    def test_listen(self):
        """
        `.listen_http01` serves the responder under
        ``/.well-known/acme-challenge/``.
        """
        reactor = MemoryReactor()
        responder = HTTP01Responder()
        self.successResultOf(
            listen_http01(reactor, responder, port=8080, interface='::1'))
        [(port, factory, backlog, interface)] = reactor.tcpServers
        self.assertEqual((8080, '::1'), (port, interface))
        self.assertIsInstance(factory, Site)
        well_known = factory.resource.getStaticEntity(b'.well-known')
        self.assertIs(
            responder.resource,
            well_known.getStaticEntity(b'acme-challenge'))


__all__ = ['HTTPResponderTests', 'ListenTests']
