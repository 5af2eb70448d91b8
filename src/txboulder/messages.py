"""
ACME protocol messages.

These are the request payloads of the original (pre-RFC 8555) ACME protocol,
as served by Boulder: every request names the kind of resource it creates or
updates in a ``resource`` field.
"""
import josepy as jose


IDENTIFIER_DNS = u'dns'


def _resource(resource_type):
    """
    The fixed ``resource`` field of a message.
    """
    return jose.Field('resource', default=resource_type)


class Identifier(jose.JSONObjectWithFields):
    """
    The identifier an authorization is requested for.
    """
    typ = jose.Field('type', default=IDENTIFIER_DNS)
    value = jose.Field('value')


class Registration(jose.JSONObjectWithFields):
    """
    Registration body.

    :ivar tuple contact: Contact URIs, e.g. ``mailto:`` ones.
    :ivar str agreement: The URI of the agreed terms of service.
    """
    contact = jose.Field('contact', omitempty=True, default=())
    agreement = jose.Field('agreement', omitempty=True)


class NewRegistration(Registration):
    """
    ACME new-reg request.
    """
    resource_type = u'new-reg'
    resource = _resource(resource_type)


class UpdateRegistration(Registration):
    """
    ACME reg request, updating an existing registration.
    """
    resource_type = u'reg'
    resource = _resource(resource_type)


class NewAuthorization(jose.JSONObjectWithFields):
    """
    ACME new-authz request.
    """
    resource_type = u'new-authz'
    resource = _resource(resource_type)
    identifier = jose.Field('identifier', decoder=Identifier.from_json)


class ChallengeResponse(jose.JSONObjectWithFields):
    """
    ACME challenge request, answering a challenge of an authorization.
    """
    resource_type = u'challenge'
    resource = _resource(resource_type)
    typ = jose.Field('type', omitempty=True)
    token = jose.Field('token')
    key_authorization = jose.Field('keyAuthorization')


class NewCertificate(jose.JSONObjectWithFields):
    """
    ACME new-cert request.

    :ivar str csr: The Base64url encoded DER of the certificate signing
        request.
    """
    resource_type = u'new-cert'
    resource = _resource(resource_type)
    csr = jose.Field('csr')


__all__ = [
    'IDENTIFIER_DNS', 'Identifier', 'Registration', 'NewRegistration',
    'UpdateRegistration', 'NewAuthorization', 'ChallengeResponse',
    'NewCertificate']
