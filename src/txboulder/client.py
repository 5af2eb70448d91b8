"""
ACME client API implementation for Twisted, speaking the original ACME
protocol as served by Boulder.

::

                              directory
                                  |
                 +----------------+----------------+
                 |                |                |
                 V                V                V
              new-reg         new-authz         new-cert
                 |                |                |
                 V                V                V
                reg ----+----> authz            cert
                        |         |
                        |         V
                        +---> challenge

   +-----------------------+------------------------------+-------------+
   | Action                | Request                      | Response    |
   +-----------------------+------------------------------+-------------+
   | 1. Get directory      | GET  directory               | 200         |
   | 2. Get nonce          | HEAD (any endpoint)          | 200/405     |
   | 3. Register           | POST new-reg                 | 201 -> reg  |
   | 4. Agree to terms     | POST reg                     | 202         |
   | 5. Authorize domain   | POST new-authz               | 201 -> authz|
   | 6. Answer challenge   | POST challenge uri           | 202         |
   | 7. Poll authorization | GET  authz                   | 200         |
   | 8. Request cert       | POST new-cert                | 201 -> cert |
   +-----------------------+------------------------------+-------------+

1. done lazily by `Client.directory`, at most once per client.
2. done by `NonceStore.take` whenever no nonce is left over from an earlier
   response.
3. `Client.new_registration`
4. `Client.update_registration`, with the ``terms-of-service`` link of 3.
5. `Client.new_authorization`
6. `Client.respond_to_challenge`
7. `Client.check_authorization_status`, polled by the caller.
8. `Client.new_certificate`
"""
import json
import re
from collections import deque
from collections.abc import Mapping
from types import MappingProxyType

import attr
import josepy as jose
from acme import messages as acme_messages
from josepy.jwa import RS256

from eliot.twisted import DeferredContext
from treq import content
from treq.client import HTTPClient
from twisted.internet import defer, error
from twisted.python.failure import Failure
from twisted.python.url import URL
from twisted.web.client import (
    Agent, HTTPConnectionPool, RequestTransmissionFailed, ResponseFailed,
    ResponseNeverReceived)
from twisted.web.http_headers import Headers

from txboulder import __version__, messages
from txboulder.errors import NetworkError, ProtocolError, ValidationError
from txboulder.logging import (
    LOG_ACME_ANSWER_CHALLENGE,
    LOG_ACME_CONSUME_DIRECTORY,
    LOG_ACME_CREATE_AUTHORIZATION,
    LOG_ACME_POLL_AUTHORIZATION,
    LOG_ACME_REGISTER,
    LOG_ACME_REQUEST_CERTIFICATE,
    LOG_ACME_UPDATE_REGISTRATION,
    LOG_HTTP_PARSE_LINKS,
    LOG_JWS_ADD_NONCE,
    LOG_JWS_GET,
    LOG_JWS_GET_NONCE,
    LOG_JWS_HEAD,
    LOG_JWS_POST,
    LOG_JWS_REQUEST,
    LOG_JWS_SIGN,
    )
from txboulder.signing import JWSSigner
from txboulder.urls import LETSENCRYPT_STAGING_DIRECTORY
from txboulder.util import (
    b64enc, check_directory_url_type, extend, extract, fields_present,
    filter_items, is_domain_name, tap, valid_jwk)


JSON_CONTENT_TYPE = b'application/json'
DER_CONTENT_TYPE = b'application/pkix-cert'
REPLAY_NONCE_HEADER = b'Replay-Nonce'

_LINK = re.compile(u'<([^>]*)>([^<]*)')
_LINK_PARAM = re.compile(u'^([^= ]+) *= *"([^"]+)"$')

_TRANSPORT_ERRORS = (
    error.ConnectError,
    error.ConnectionClosed,
    RequestTransmissionFailed,
    ResponseFailed,
    ResponseNeverReceived,
    )


def _header(response, name):
    """
    The first value of a response header field, as text, or ``None``.
    """
    value = response.headers.getRawHeaders(name, [None])[0]
    if value is None:
        return None
    return value.decode('latin-1')


def parse_links(value):
    """
    Parse the links from a Link: header field.

    Only the ``rel`` parameter of each link is kept.  When several links
    share a relation, the last one wins.  A missing or malformed header field
    yields no links, and links whose URL is not enclosed in angle brackets
    are skipped.

    ..  seealso: RFC 5988

    :param str value: The header value, or ``None``.

    :rtype: `dict`
    :return: A dictionary mapping relations to URLs.
    """
    with LOG_HTTP_PARSE_LINKS(raw_link=value) as action:
        links = {}
        if value:
            for url, rest in _LINK.findall(value):
                params = {}
                for param in rest.split(u',')[0].split(u';')[1:]:
                    match = _LINK_PARAM.match(param.strip())
                    if match is not None:
                        params[match.group(1)] = match.group(2)
                if u'rel' in params:
                    links[params[u'rel']] = url
        action.add_success_fields(parsed_links=links)
        return links


def _response_links(response):
    """
    Parse the links of all the Link: header fields of a response.
    """
    values = response.headers.getRawHeaders(b'link', [])
    try:
        value = b','.join(values).decode('ascii')
    except UnicodeDecodeError:
        value = None
    return parse_links(value)


def extract_location(value):
    """
    The Location: header field, as it was sent.

    :param value: The header value as ``bytes`` or ``str``, or ``None``.

    :rtype: str
    """
    if isinstance(value, bytes):
        return value.decode('latin-1')
    return value


def _decode_json(body, url=None):
    """
    Decode a JSON response body; an empty body decodes to ``None``.
    """
    if not body:
        return None
    try:
        return json.loads(body.decode('utf-8'))
    except ValueError as e:
        raise NetworkError(u'Malformed JSON response: {}'.format(e), url)


def fqdn_identifier(fqdn):
    """
    Construct an identifier from an FQDN.

    Trivial implementation, just saves on typing.

    :param str fqdn: The domain name.

    :return: The identifier.
    :rtype: `~txboulder.messages.Identifier`
    """
    return messages.Identifier(
        typ=messages.IDENTIFIER_DNS, value=fqdn)


@attr.s(frozen=True)
class AcmeResponse(object):
    """
    The outcome of a request to an ACME server.

    :ivar body: The decoded JSON body, or the raw ``bytes`` for binary
        responses.
    :ivar dict links: Link relations of the response, ``rel`` to URL.
    :ivar str location: The Location: header, if any.
    """
    body = attr.ib()
    links = attr.ib(default=attr.Factory(dict))
    location = attr.ib(default=None)

    def link(self, rel):
        """
        The URL of the link with the given relation, or ``None``.
        """
        return self.links.get(rel)


class NonceStore(object):
    """
    The anti-replay nonces received from a server and not used yet.

    Each nonce is handed out at most once.  When the store runs dry, a fresh
    nonce is fetched with a HEAD request.

    :param head: A callable performing a HEAD request, returning a
        ``Deferred`` firing with the response.
    """
    def __init__(self, head):
        self._head = head
        self._nonces = deque()
        self._lock = defer.DeferredLock()

    def __len__(self):
        return len(self._nonces)

    def deposit(self, nonce):
        """
        Add a nonce to the store.

        :param str nonce: The nonce, as sent by the server.
        """
        LOG_JWS_ADD_NONCE(nonce=nonce).write()
        self._nonces.append(nonce)

    def deposit_from(self, response):
        """
        Store the nonce of a response, if there is one.

        :return: The response, unmodified.
        """
        nonce = _header(response, REPLAY_NONCE_HEADER)
        if nonce is not None:
            self.deposit(nonce)
        return response

    def take(self, probe_url):
        """
        Get a nonce to use in a request, removing it from the store.

        :param str probe_url: Where to send the HEAD request if the store is
            empty.

        :raises ProtocolError: If the probe response carries no nonce.

        :rtype: Deferred[str]
        """
        return self._lock.run(self._take, probe_url)

    def _take(self, probe_url):
        action = LOG_JWS_GET_NONCE(url=probe_url)
        if len(self._nonces) > 0:
            with action:
                nonce = self._nonces.popleft()
                action.add_success_fields(nonce=nonce)
                return defer.succeed(nonce)
        with action.context():
            return (
                DeferredContext(self._head(probe_url))
                .addCallback(self._cb_probe_nonce)
                .addCallback(tap(
                    lambda nonce: action.add_success_fields(nonce=nonce)))
                .addActionFinish())

    @classmethod
    def _cb_probe_nonce(cls, response):
        nonce = _header(response, REPLAY_NONCE_HEADER)
        if nonce is None:
            raise ProtocolError(u'No nonce available', code=response.code)
        return nonce


def _default_client(reactor):
    """
    Make an HTTP client with persistent connections.
    """
    pool = HTTPConnectionPool(reactor)
    return HTTPClient(Agent(reactor, pool=pool))


class JWSClient(object):
    """
    HTTP client using JWS-signed messages for ACME.

    Concurrent requests are fine; each signed request uses its own nonce.

    :param treq_client: The ``treq`` HTTP client to send requests with.
    :param key: The ``josepy`` account key.
    :param ~txboulder.interfaces.ISigner signer: Produces the signed
        envelopes.
    :param bytes user_agent: The User-Agent: sent with every request.
    """
    def __init__(self, treq_client, key, signer,
                 user_agent=u'txboulder/{}'.format(__version__).encode(
                     'ascii')):
        self._treq = treq_client
        self._key = key
        self._signer = signer
        self._headers = Headers({b'user-agent': [user_agent]})
        self.nonces = NonceStore(self.head)

    def _request_headers(self, extra):
        """
        Copy the base headers, adding ``extra`` ones for a single request.
        """
        headers = self._headers.copy()
        for name, value in extra.items():
            headers.setRawHeaders(name, [value])
        return headers

    def _send_request(self, method, url, headers=None, **kwargs):
        """
        Send HTTP request.

        :param str method: The HTTP method to use.
        :param str url: The URL to make the request to.
        :param dict headers: Header fields to add to the base ones.

        :raises NetworkError: If the request could not be completed.

        :return: Deferred firing with the HTTP response.
        """
        def cb_transport_failure(f):
            f.trap(*_TRANSPORT_ERRORS)
            raise NetworkError(
                u'{} request failed: {}'.format(method, f.getErrorMessage()),
                url)

        action = LOG_JWS_REQUEST(method=method, url=url)
        with action.context():
            kwargs['headers'] = self._request_headers(headers or {})
            return (
                DeferredContext(
                    defer.maybeDeferred(
                        self._treq.request, method, url, **kwargs))
                .addErrback(cb_transport_failure)
                .addCallback(
                    tap(lambda r: action.add_success_fields(
                        code=r.code,
                        content_type=_header(r, b'content-type'))))
                .addActionFinish())

    @classmethod
    def _check_response(cls, response, url=None):
        """
        Check the response status, turning error responses into
        `ProtocolError`.

        The error body is decoded when possible; problem documents become
        `acme.messages.Error` objects.
        """
        if 200 <= response.code < 300:
            return response

        def cb_fail(body):
            try:
                jobj = json.loads(body.decode('utf-8'))
            except ValueError:
                jobj = body.decode('utf-8', 'replace')
            if isinstance(jobj, dict):
                try:
                    problem = acme_messages.Error.from_json(jobj)
                except jose.DeserializationError:
                    problem = None
                if problem is not None:
                    raise ProtocolError(str(problem), response.code, problem)
            raise ProtocolError(
                u'Unexpected response status {} from {}'.format(
                    response.code, url),
                response.code, jobj)

        return content(response).addCallback(cb_fail)

    def _cb_wrap_response(self, response, url, binary=False):
        """
        Read the body of a checked response, together with its metadata.
        """
        links = _response_links(response)
        location = extract_location(
            response.headers.getRawHeaders(b'location', [None])[0])
        d = content(response)
        if not binary:
            d.addCallback(_decode_json, url)
        d.addCallback(
            lambda body: AcmeResponse(
                body=body, links=links, location=location))
        return d

    def _cb_sign(self, nonce, payload):
        """
        Wrap ``payload`` in a signed envelope, serialized as JSON.

        :rtype: bytes
        """
        with LOG_JWS_SIGN(nonce=nonce):
            envelope = self._signer.sign(self._key, nonce, payload)
            return json.dumps(
                envelope,
                default=jose.JSONDeSerializable.json_dump_default,
                ).encode('utf-8')

    def head(self, url):
        """
        Send HEAD request without checking the response.

        :param str url: The URL to make the request to.
        """
        with LOG_JWS_HEAD(url=url).context():
            return DeferredContext(
                self._send_request(u'HEAD', url)
                ).addActionFinish()

    def get(self, url):
        """
        Send GET request and check response.

        :param str url: The URL to make the request to.

        :raises ProtocolError: If the server answers with an error.
        :raises NetworkError: In case of transport errors.

        :rtype: Deferred[`AcmeResponse`]
        """
        with LOG_JWS_GET(url=url).context():
            return (
                DeferredContext(self._send_request(u'GET', url))
                .addCallback(self.nonces.deposit_from)
                .addCallback(self._check_response, url)
                .addCallback(self._cb_wrap_response, url)
                .addActionFinish())

    def post(self, url, payload, binary=False):
        """
        Sign an object with a fresh nonce, POST it and check the response.

        :param str url: The URL to request.
        :param payload: The ``josepy`` message to send.
        :param bool binary: Return the response body as raw bytes instead of
            decoding it as JSON.

        :raises ProtocolError: If the server answers with an error.
        :raises NetworkError: In case of transport errors.

        :rtype: Deferred[`AcmeResponse`]
        """
        headers = {b'content-type': JSON_CONTENT_TYPE}
        if binary:
            headers[b'accept'] = DER_CONTENT_TYPE
        with LOG_JWS_POST(url=url, binary=binary).context():
            return (
                DeferredContext(self.nonces.take(url))
                .addCallback(self._cb_sign, payload)
                .addCallback(
                    lambda data: self._send_request(
                        u'POST', url, headers=headers, data=data))
                .addCallback(self.nonces.deposit_from)
                .addCallback(self._check_response, url)
                .addCallback(self._cb_wrap_response, url, binary)
                .addActionFinish())

    def stop(self):
        """
        Stops the operation.

        This closes any persistent connection.

        :return: A deferred which fires when the client is stopped.
        """
        agent_pool = getattr(getattr(self._treq, '_agent', None), '_pool', None)
        if agent_pool:
            return agent_pool.closeCachedConnections()
        return defer.succeed(None)


class Client(object):
    """
    ACME client interface.

    One client speaks for a single account key to a single server.  Nothing is
    sent until the first operation; the directory is fetched once, on demand.

    :param key: The ``josepy`` account private key.
    :param JWSClient jws_client: The client used to send the requests.
    :param signer: The `~txboulder.interfaces.ISigner` used by
        ``jws_client``; it also provides the key thumbprint.
    :param url: The ``twisted.python.url.URL`` of the directory.
    """
    def __init__(self, key, jws_client, signer,
                 url=LETSENCRYPT_STAGING_DIRECTORY):
        check_directory_url_type(url)
        try:
            public_jwk = key.public_key().to_partial_json()
        except AttributeError:
            raise ValidationError('Invalid account key: {!r}'.format(key))
        if not valid_jwk(public_jwk):
            raise ValidationError('Invalid account key: {!r}'.format(key))
        self.key = key
        self._client = jws_client
        self._signer = signer
        self._directory_url = url
        self._directory = None
        self._waiting = []

    @classmethod
    def from_url(cls, reactor, url, key, alg=RS256, treq_client=None):
        """
        Construct a client for the ACME directory at a given URL.

        :param reactor: The Twisted reactor to use.
        :param url: The ``twisted.python.url.URL`` of the directory.  See
            `txboulder.urls` for constants for various well-known public
            directories.
        :param ~josepy.jwk.JWK key: The client key to use.
        :param alg: The signing algorithm to use.  Needs to be compatible with
            the type of key used.
        :param treq_client: The ``treq`` HTTP client to use, or ``None`` to
            construct one.

        :rtype: `Client`
        """
        if treq_client is None:
            treq_client = _default_client(reactor)
        signer = JWSSigner(alg=alg)
        return cls(
            key=key,
            jws_client=JWSClient(treq_client, key, signer),
            signer=signer,
            url=url,
            )

    def stop(self):
        """
        Stops the client operation.

        :return: When operation is done.
        :rtype: Deferred[None]
        """
        return self._client.stop()

    def directory(self):
        """
        Get the directory of the server.

        The directory is fetched on the first call; calls made while that
        fetch is in progress wait for it.  Once fetched, it is cached for the
        life of the client.  A failed fetch is reported to every waiting
        caller, and tried again on the next call.

        :rtype: Deferred[Mapping[str, str]]
        :return: The resource names mapped to their URLs.
        """
        if self._directory is not None:
            return defer.succeed(self._directory)
        d = defer.Deferred()
        self._waiting.append(d)
        if len(self._waiting) == 1:
            self._fetch_directory().addBoth(self._cb_directory_done)
        return d

    def _cb_directory_done(self, result):
        waiting, self._waiting = self._waiting, []
        if isinstance(result, Failure):
            for d in waiting:
                d.errback(result)
        else:
            self._directory = result
            for d in waiting:
                d.callback(result)

    def _fetch_directory(self):
        url = self._directory_url.asText()
        action = LOG_ACME_CONSUME_DIRECTORY(url=url)
        with action.context():
            return (
                DeferredContext(self._client.get(url))
                .addCallback(self._cb_parse_directory)
                .addCallback(
                    tap(lambda d: action.add_success_fields(
                        directory=dict(d))))
                .addActionFinish())

    @classmethod
    def _cb_parse_directory(cls, response):
        if not isinstance(response.body, Mapping):
            raise ProtocolError(
                u'Malformed directory: {!r}'.format(response.body))
        return MappingProxyType(
            filter_items(
                response.body, lambda key, value: isinstance(value, str)))

    def _endpoint(self, resource, capability):
        """
        Look up the URL of a resource in the directory.

        :raises ProtocolError: If the server does not offer the resource.
        """
        def cb_lookup(directory):
            url = directory.get(resource)
            if not url:
                raise ProtocolError(
                    u'No {} endpoint available'.format(capability))
            return url
        return self.directory().addCallback(cb_lookup)

    def new_registration(self, contacts, agreement=None):
        """
        Create a new registration with the ACME server.

        :param contacts: A non-empty list of contact URIs, such as
            ``mailto:admin@example.com``.
        :param str agreement: The URI of the terms of service agreed to, if
            any.

        :raises ValidationError: If ``contacts`` is not a non-empty list of
            URIs.

        :rtype: Deferred[`AcmeResponse`]
        :return: The registration; its location is the registration URI.
        """
        if (not isinstance(contacts, (list, tuple)) or
                len(contacts) == 0 or
                not all(_is_uri(contact) for contact in contacts)):
            raise ValidationError(
                'contacts must be non-empty list of URIs, got {!r}'.format(
                    contacts))
        message = messages.NewRegistration(
            contact=tuple(contacts), agreement=agreement)
        action = LOG_ACME_REGISTER(registration=message)
        with action.context():
            return (
                DeferredContext(
                    self._endpoint(u'new-reg', u'new-registration'))
                .addCallback(self._client.post, message)
                .addCallback(
                    tap(lambda r: action.add_success_fields(
                        location=r.location)))
                .addActionFinish())

    def update_registration(self, uri, registration):
        """
        Update a registration with new information.

        :param str uri: The URI of the registration.
        :param registration: A mapping with the new ``contact`` and/or
            ``agreement``; it is not modified.

        :raises ValidationError: If no registration URI is given.

        :rtype: Deferred[`AcmeResponse`]
        :return: The updated registration.
        """
        if not uri:
            raise ValidationError('No registration URI provided')
        fields = extract([u'contact', u'agreement'], registration)
        if u'contact' in fields:
            fields[u'contact'] = tuple(fields[u'contact'])
        message = messages.UpdateRegistration(**fields)
        action = LOG_ACME_UPDATE_REGISTRATION(registration=message, uri=uri)
        with action.context():
            return (
                DeferredContext(self._client.post(uri, message))
                .addActionFinish())

    def new_authorization(self, domain):
        """
        Request authorization for a domain name.

        :param str domain: The domain name; a trailing dot is dropped.

        :raises ValidationError: If ``domain`` is not a domain name.

        :rtype: Deferred[`AcmeResponse`]
        :return: The authorization, carrying the challenges to answer.
        """
        if not is_domain_name(domain):
            raise ValidationError(
                'Authorization can only be done for domain names, '
                'got {!r}'.format(domain))
        identifier = fqdn_identifier(domain.rstrip(u'.'))
        message = messages.NewAuthorization(identifier=identifier)
        action = LOG_ACME_CREATE_AUTHORIZATION(identifier=identifier)
        with action.context():
            return (
                DeferredContext(
                    self._endpoint(u'new-authz', u'new-authorization'))
                .addCallback(self._client.post, message)
                .addCallback(
                    tap(lambda r: action.add_success_fields(
                        location=r.location)))
                .addActionFinish())

    def key_authorization(self, token):
        """
        The key authorization for a challenge token: the token and the
        thumbprint of the account key, joined by a dot.

        :rtype: str
        """
        return u'{}.{}'.format(token, self._signer.thumbprint(self.key))

    def respond_to_challenge(self, challenge):
        """
        Tell the server a challenge is ready to be validated.

        :param challenge: The challenge JSON object, from the authorization;
            it is not modified.

        :raises ValidationError: If the challenge has no ``uri`` or
            ``token``.

        :rtype: Deferred[`AcmeResponse`]
        :return: The updated challenge.
        """
        if not fields_present([u'uri', u'token'], challenge) or not (
                challenge[u'uri'] and challenge[u'token']):
            raise ValidationError(
                'Invalid challenge object: {!r}'.format(challenge))
        completed = extend(
            challenge,
            {u'keyAuthorization': self.key_authorization(challenge[u'token'])})
        message = messages.ChallengeResponse(
            typ=completed.get(u'type'),
            token=completed[u'token'],
            key_authorization=completed[u'keyAuthorization'],
            )
        uri = completed[u'uri']
        action = LOG_ACME_ANSWER_CHALLENGE(response=message, uri=uri)
        with action.context():
            return (
                DeferredContext(self._client.post(uri, message))
                .addActionFinish())

    def check_authorization_status(self, uri):
        """
        Check the status of an authorization.

        :param str uri: The URI of the authorization.

        :raises ProtocolError: If the authorization has no status.

        :rtype: Deferred[str]
        :return: The status: ``pending``, ``valid`` or ``invalid``.
        """
        def cb_status(response):
            body = response.body
            if not isinstance(body, Mapping) or not isinstance(
                    body.get(u'status'), str):
                raise ProtocolError(
                    u'Authorization has no status: {!r}'.format(body))
            return body[u'status']

        action = LOG_ACME_POLL_AUTHORIZATION(uri=uri)
        with action.context():
            return (
                DeferredContext(self._client.get(uri))
                .addCallback(cb_status)
                .addCallback(
                    tap(lambda s: action.add_success_fields(status=s)))
                .addActionFinish())

    def new_certificate(self, csr):
        """
        Request issuance of a certificate.

        Authorizations should have already been completed for all of the names
        requested in the CSR.

        :param bytes csr: The DER-encoded certificate signing request.

        :raises ValidationError: If ``csr`` is not bytes.

        :rtype: Deferred[`AcmeResponse`]
        :return: The issued certificate, as DER bytes in the body.
        """
        if not isinstance(csr, bytes) or len(csr) == 0:
            raise ValidationError('csr must be DER bytes, got {!r}'.format(
                type(csr)))
        message = messages.NewCertificate(csr=b64enc(csr))
        action = LOG_ACME_REQUEST_CERTIFICATE()
        with action.context():
            return (
                DeferredContext(
                    self._endpoint(u'new-cert', u'new-certificate'))
                .addCallback(self._client.post, message, binary=True)
                .addCallback(
                    tap(lambda r: action.add_success_fields(
                        location=r.location)))
                .addActionFinish())

    def get(self, uri):
        """
        Retrieve a JSON document.

        :param str uri: The document to retrieve.

        :rtype: Deferred
        :return: The decoded document.
        """
        return self._client.get(uri).addCallback(lambda r: r.body)


def _is_uri(value):
    """
    Is ``value`` text of a URI with a scheme?
    """
    if not isinstance(value, str):
        return False
    try:
        return bool(URL.fromText(value).scheme)
    except (TypeError, ValueError):
        return False


__all__ = [
    'AcmeResponse', 'Client', 'JWSClient', 'NonceStore', 'DER_CONTENT_TYPE',
    'JSON_CONTENT_TYPE', 'REPLAY_NONCE_HEADER',
    'extract_location', 'fqdn_identifier', 'parse_links']
