"""
The ``txboulder`` command: obtain a certificate for one domain, answering
the ``http-01`` challenge from this process.

Example::

    $ txboulder --domain example.com --email mailto:admin@example.com \\
        --agree-tos --state-dir /var/lib/txboulder
"""
import os
import sys

import josepy as jose
from cryptography.hazmat.primitives import serialization
from eliot import FileDestination, add_destinations, remove_destination
from twisted.internet import defer, task
from twisted.logger import Logger, globalLogBeginner, textFileLogObserver
from twisted.python import usage
from twisted.python.filepath import FilePath
from twisted.python.url import URL

from txboulder.challenges import HTTP01Responder, listen_http01
from txboulder.client import Client
from txboulder.errors import ProtocolError
from txboulder.store import JSONStore
from txboulder.urls import LETSENCRYPT_STAGING_DIRECTORY
from txboulder.util import (
    b64enc, csr_der, csr_for_names, extend, generate_private_key,
    is_domain_name, key_fingerprint)


_log = Logger()

ACCOUNT_KEY_DOCUMENT = u'account'
REGISTRATIONS_DOCUMENT = u'registrations'


class Options(usage.Options):
    synopsis = (
        '--domain DOMAIN --email CONTACT [--email CONTACT ...] [options]')

    optFlags = [
        ['agree-tos', None,
         'Agree to the terms of service the authority links to.'],
        ]

    optParameters = [
        ['directory', None, None,
         'ACME directory URL [default: $TXBOULDER_DIRECTORY, or the '
         'Let\'s Encrypt staging directory]'],
        ['port', 'p', None,
         'Port to answer http-01 challenges on [default: $TXBOULDER_PORT, '
         'or 80]', int],
        ['domain', 'd', None, 'The domain to obtain a certificate for.'],
        ['state-dir', None, '.', 'Where to keep keys and certificates.'],
        ['poll-interval', None, 2.0,
         'Seconds between authorization status checks.', float],
        ['max-polls', None, 30,
         'Authorization status checks before giving up.', int],
        ['log-file', None, None,
         'Write the eliot log of the protocol exchange to this file.'],
        ]

    def __init__(self, environ=None):
        usage.Options.__init__(self)
        self.environ = os.environ if environ is None else environ
        self['contacts'] = []

    def opt_email(self, contact):
        """
        A contact for the registration, such as mailto:admin@example.com;
        may be given more than once.
        """
        if u':' not in contact:
            contact = u'mailto:' + contact
        self['contacts'].append(contact)

    opt_e = opt_email

    def postOptions(self):
        if self['directory'] is None:
            self['directory'] = self.environ.get(
                'TXBOULDER_DIRECTORY', LETSENCRYPT_STAGING_DIRECTORY.asText())
        if self['port'] is None:
            try:
                self['port'] = int(self.environ.get('TXBOULDER_PORT', 80))
            except ValueError:
                raise usage.UsageError('TXBOULDER_PORT must be a number')
        if not self['domain'] or not is_domain_name(self['domain']):
            raise usage.UsageError('A valid --domain is required')
        if not self['contacts']:
            raise usage.UsageError('At least one --email is required')
        if self['max-polls'] < 1:
            raise usage.UsageError('--max-polls must be at least 1')


def log_to_file(path):
    """
    Append the eliot log to the file at ``path``.

    :return: A function that stops logging to the file and closes it.
    """
    log_file = open(path, 'a')
    destination = FileDestination(file=log_file)
    add_destinations(destination)

    def stop():
        remove_destination(destination)
        log_file.close()
    return stop


def setup_logging(log_file=None, stream=sys.stderr):
    """
    Log progress to ``stream``, and the eliot log to ``log_file`` if given.

    :return: A function to call once logging to ``log_file`` is done.
    """
    globalLogBeginner.beginLoggingTo([textFileLogObserver(stream)])
    if log_file is None:
        return lambda: None
    return log_to_file(log_file)


@defer.inlineCallbacks
def load_or_create_account_key(store):
    """
    Load the account key from ``store``, creating it if it does not exist.

    .. note:: The key that will be created will be a 2048-bit RSA key.

    :rtype: Deferred[josepy.jwk.JWK]
    """
    jobj = yield store.read(ACCOUNT_KEY_DOCUMENT)
    if jobj is not None:
        return jose.JWK.from_json(jobj)
    key = jose.JWKRSA(key=generate_private_key(u'rsa'))
    yield store.write(ACCOUNT_KEY_DOCUMENT, key.to_json())
    _log.info('Created a new account key')
    return key


@defer.inlineCallbacks
def register(client, store, contacts, agree_tos=False):
    """
    Register the account, agreeing to the terms of service if asked to, and
    remember where the registration lives.

    An account key that was registered before, according to ``store``, is
    not registered again; its registration is updated with ``contacts``
    instead.

    :return: The registration URI.
    """
    fingerprint = key_fingerprint(client.key.public_key().to_partial_json())
    registrations = yield store.read(REGISTRATIONS_DOCUMENT)
    if not isinstance(registrations, dict):
        registrations = {}
    location = registrations.get(fingerprint)
    if location is None:
        response = yield client.new_registration(contacts)
        location = response.location
        yield store.write(
            REGISTRATIONS_DOCUMENT,
            extend(registrations, {fingerprint: location}))
    else:
        _log.info('Using the existing registration at {location}',
                  location=location)
        response = yield client.update_registration(
            location, {u'contact': contacts})
    terms = response.link(u'terms-of-service')
    agreed = (
        isinstance(response.body, dict) and
        response.body.get(u'agreement') == terms)
    if terms is not None and not agreed:
        if agree_tos:
            yield client.update_registration(
                location, {u'contact': contacts, u'agreement': terms})
            _log.info('Agreed to the terms of service at {terms}',
                      terms=terms)
        else:
            _log.warn('Not agreeing to the terms of service at {terms}; '
                      'use --agree-tos to agree', terms=terms)
    return location


def _find_challenge(authorization, challenge_type):
    challenges = []
    if isinstance(authorization, dict):
        challenges = authorization.get(u'challenges') or []
    for challenge in challenges:
        if isinstance(challenge, dict) and (
                challenge.get(u'type') == challenge_type):
            return challenge
    raise ProtocolError(
        u'No {} challenge offered'.format(challenge_type), body=authorization)


@defer.inlineCallbacks
def poll_authorization(clock, client, uri, interval, max_polls):
    """
    Check an authorization until it is valid.

    :raises ProtocolError: If it turns invalid, or stays pending for
        ``max_polls`` checks.
    """
    for attempt in range(max_polls):
        if attempt > 0:
            yield task.deferLater(clock, interval, lambda: None)
        status = yield client.check_authorization_status(uri)
        _log.info('Authorization status: {status}', status=status)
        if status == u'valid':
            return status
        if status == u'invalid':
            raise ProtocolError(u'Authorization failed: {}'.format(uri))
    raise ProtocolError(
        u'Authorization still pending after {} checks: {}'.format(
            max_polls, uri))


@defer.inlineCallbacks
def authorize(clock, client, responder, domain, interval=2.0, max_polls=30):
    """
    Prove control of ``domain`` with the responder's challenge type.
    """
    response = yield client.new_authorization(domain)
    if not response.location:
        raise ProtocolError(u'Authorization has no location')
    challenge = _find_challenge(response.body, responder.challenge_type)
    completed = extend(
        challenge,
        {u'keyAuthorization': client.key_authorization(
            challenge.get(u'token'))})
    yield defer.maybeDeferred(
        responder.start_responding, domain, completed)
    try:
        yield client.respond_to_challenge(challenge)
        yield poll_authorization(
            clock, client, response.location, interval, max_polls)
    finally:
        yield defer.maybeDeferred(
            responder.stop_responding, domain, completed)


@defer.inlineCallbacks
def issue(client, store, domain):
    """
    Generate a key for ``domain``, have a certificate issued and store both.

    :return: The stored document.
    """
    key = generate_private_key(u'rsa')
    csr = csr_for_names([domain], key)
    response = yield client.new_certificate(csr_der(csr))
    document = {
        u'location': response.location,
        u'certificate': b64enc(response.body),
        u'key': key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
            ).decode('ascii'),
        }
    yield store.write(domain, document)
    _log.info('Certificate for {domain} stored, issued at {location}',
              domain=domain, location=response.location)
    return document


@defer.inlineCallbacks
def obtain_certificate(clock, client, responder, store, options):
    """
    Run the whole lifecycle for the domain named in ``options``.
    """
    yield register(
        client, store, options['contacts'], options['agree-tos'])
    yield authorize(
        clock, client, responder, options['domain'],
        options['poll-interval'], options['max-polls'])
    document = yield issue(client, store, options['domain'])
    return document


@defer.inlineCallbacks
def _run(reactor, options):
    store = JSONStore(FilePath(options['state-dir']))
    key = yield load_or_create_account_key(store)
    client = Client.from_url(
        reactor, URL.fromText(options['directory']), key)
    responder = HTTP01Responder()
    port = yield listen_http01(reactor, responder, options['port'])
    try:
        yield obtain_certificate(reactor, client, responder, store, options)
    finally:
        yield port.stopListening()
        yield client.stop()


def main(reactor, *argv):
    options = Options()
    try:
        options.parseOptions(argv)
    except usage.UsageError as e:
        raise SystemExit('{}\n{}'.format(options, e))
    stop_logging = setup_logging(options['log-file'])

    def _stop_logging(result):
        stop_logging()
        return result
    return _run(reactor, options).addBoth(_stop_logging)


def run():
    task.react(main, sys.argv[1:])


__all__ = [
    'Options', 'authorize', 'issue', 'load_or_create_account_key',
    'log_to_file', 'main',
    'obtain_certificate', 'poll_authorization', 'register', 'run']
