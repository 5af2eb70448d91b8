# -*- coding: utf-8 -*-
"""
Interface definitions for txboulder.
"""
from zope.interface import Attribute, Interface


class ISigner(Interface):
    """
    Produces the signed envelopes of the requests sent to an ACME server.
    """
    def sign(key, nonce, payload):
        """
        Sign a payload.

        :param key: The account private key.
        :param str nonce: The anti-replay nonce to embed, as received from the
            server.
        :param payload: The ``josepy`` message to sign.

        :return: The signed envelope; anything ``json.dumps`` can serialize
            with ``josepy.JSONDeSerializable.json_dump_default``.
        """

    def thumbprint(key):
        """
        A stable identifier for the public half of ``key``.

        :rtype: str
        """


class IResponder(Interface):
    """
    Configuration for an ACME challenge responder.

    The actual responder may exist somewhere else, this interface is merely for
    an object that knows how to configure it.
    """
    challenge_type = Attribute(
        """
        The type of challenge this responder is able to respond for; for
        example, ``u'http-01'``.
        """)

    def start_responding(server_name, challenge):
        """
        Start responding for a particular challenge.

        :param str server_name: The domain being validated.
        :param challenge: The challenge JSON object, completed with its
            ``keyAuthorization``.

        :rtype: ``Deferred``
        :return: A deferred firing when the challenge is ready to be verified.
        """

    def stop_responding(server_name, challenge):
        """
        Stop responding for a particular challenge.

        May be a noop if a particular responder does not need or implement
        explicit cleanup; implementations should not rely on this method always
        being called.
        """


class IJSONStore(Interface):
    """
    A store of JSON documents, addressed by name.
    """
    def read(name):
        """
        Retrieve a document.

        Missing or unreadable documents are not an error.

        :param str name: The document name.

        :return: ``Deferred`` firing with the document, or ``None``.
        """

    def write(name, obj):
        """
        Store a document, replacing any previous one of the same name.

        :param str name: The document name.
        :param obj: Any JSON serializable object.

        :return: ``Deferred`` firing with ``obj`` once it is stored.
        """


__all__ = ['IJSONStore', 'IResponder', 'ISigner']
