"""
Utility functions that may prove useful when writing an ACME client.

Everything in here is stateless.
"""
import re
from collections.abc import Mapping
from functools import wraps

import idna
from josepy.b64 import b64decode, b64encode

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from twisted.internet.defer import maybeDeferred
from twisted.python.url import URL

from txboulder.errors import ValidationError


_B64URL_INVALID = re.compile(u'[^a-zA-Z0-9_-]')

_DNS_LABEL = re.compile(u'\\A(?!-)[a-z0-9-]{1,63}(?<!-)\\Z')


def from_standard_b64(x):
    """
    Translate standard Base64 to Base64url, dropping the padding.

    :param str x: Base64 text.
    :rtype: str
    """
    return x.replace(u'+', u'-').replace(u'/', u'_').replace(u'=', u'')


def to_standard_b64(x):
    """
    Translate Base64url to padded standard Base64.

    Any padding already present is stripped and derived again from the
    length, so applying this twice gives the same result as applying it once.

    :param str x: Base64url text.
    :rtype: str
    """
    b64 = x.replace(u'-', u'+').replace(u'_', u'/').replace(u'=', u'')
    remainder = len(b64) % 4
    if remainder == 2:
        b64 += u'=='
    elif remainder == 3:
        b64 += u'='
    return b64


def b64enc(data):
    """
    Base64url encode some bytes.

    :param bytes data: The bytes to encode.
    :rtype: str
    """
    return b64encode(data).decode('ascii')


def b64dec(x):
    """
    Decode Base64url (or standard Base64) text, padded or not.

    :param str x: The encoded text.
    :rtype: bytes
    """
    return b64decode(from_standard_b64(x))


def is_b64_string(x):
    """
    Is ``x`` text made only of Base64url characters?
    """
    return isinstance(x, str) and _B64URL_INVALID.search(x) is None


def fields_present(fields, obj):
    """
    Are all of the given fields keys of ``obj``?

    The values are not inspected; a field mapped to ``None`` is present.

    :param fields: A list or tuple of field names.
    :param obj: The mapping to check.
    :rtype: bool
    """
    if not isinstance(fields, (list, tuple)) or not isinstance(obj, Mapping):
        return False
    return all(field in obj for field in fields)


def valid_jwk(jwk):
    """
    Is ``jwk`` a structurally valid public JSON Web Key?

    A key carrying the private exponent ``d`` is never valid, whatever the
    rest of it looks like.

    :param jwk: The JSON object of the key.
    :rtype: bool
    """
    if not fields_present([u'kty'], jwk) or u'd' in jwk:
        return False
    kty = jwk[u'kty']
    if kty == u'RSA':
        return is_b64_string(jwk.get(u'n')) and is_b64_string(jwk.get(u'e'))
    if kty == u'EC':
        return (
            isinstance(jwk.get(u'crv'), str) and
            is_b64_string(jwk.get(u'x')) and
            is_b64_string(jwk.get(u'y')))
    return False


def valid_signature(sig):
    """
    Is ``sig`` a structurally valid signature object?
    """
    if not fields_present([u'alg', u'nonce', u'sig', u'jwk'], sig):
        return False
    return (
        isinstance(sig[u'alg'], str) and
        is_b64_string(sig[u'nonce']) and
        is_b64_string(sig[u'sig']) and
        valid_jwk(sig[u'jwk']))


def key_fingerprint(jwk):
    """
    A simple, non-standard fingerprint for a JWK, so that keys can be told
    apart without storing them.

    This is not a thumbprint and must not be used for anything security
    related.

    :param jwk: The JSON object of the key.

    :raises ValidationError: If the key has no type or an unknown one.

    :rtype: str
    """
    if not fields_present([u'kty'], jwk):
        raise ValidationError('Invalid key')
    kty = jwk[u'kty']
    if kty == u'RSA':
        return u'{}'.format(jwk.get(u'n'))
    if kty == u'EC':
        return u'{}|{}|{}'.format(
            jwk.get(u'crv'), jwk.get(u'x'), jwk.get(u'y'))
    raise ValidationError('Unrecognized key type: {!r}'.format(kty))


def extend(*mappings):
    """
    Merge mappings into a new dict.

    Later mappings win; keys mapped to ``None`` are left out, and ``None``
    mappings are skipped.
    """
    result = {}
    for mapping in mappings:
        if mapping is None:
            continue
        for key, value in mapping.items():
            if value is not None:
                result[key] = value
    return result


def extract(fields, mapping):
    """
    Copy the given fields, where they exist, out of ``mapping``.

    :rtype: dict
    """
    if not isinstance(fields, (list, tuple)) or not isinstance(
            mapping, Mapping):
        return {}
    return {field: mapping[field] for field in fields if field in mapping}


def filter_items(mapping, predicate):
    """
    Keep the items of ``mapping`` for which ``predicate(key, value)`` is true.

    :rtype: dict
    """
    if mapping is None or predicate is None:
        return {}
    return {
        key: value
        for key, value in mapping.items()
        if predicate(key, value)}


def is_domain_name(name):
    """
    Is ``name`` a syntactically valid, fully qualified domain name?

    Internationalized names are accepted if they can be IDNA encoded.  At
    least two labels are required, and the last one must not be numeric, so
    neither bare hostnames nor IP addresses pass.
    """
    if not isinstance(name, str):
        return False
    try:
        encoded = idna.encode(name.rstrip(u'.'), uts46=True).decode('ascii')
    except idna.IDNAError:
        return False
    if len(encoded) > 253:
        return False
    labels = encoded.lower().split(u'.')
    if len(labels) < 2 or labels[-1].isdigit():
        return False
    return all(_DNS_LABEL.match(label) for label in labels)


def generate_private_key(key_type):
    """
    Generate a random private key using sensible parameters.

    :param str key_type: The type of key to generate. One of: ``rsa``.
    """
    if key_type == u'rsa':
        return rsa.generate_private_key(
            public_exponent=65537, key_size=2048, backend=default_backend())
    raise ValueError(key_type)


def tap(f):
    """
    "Tap" a Deferred callback chain with a function whose return value is
    ignored.
    """
    @wraps(f)
    def _cb(res, *a, **kw):
        d = maybeDeferred(f, res, *a, **kw)
        d.addCallback(lambda ignored: res)
        return d
    return _cb


def csr_for_names(names, key):
    """
    Generate a certificate signing request for the given names and private key.

    ..  seealso:: `generate_private_key`

    :param ``List[str]``: One or more names (subjectAltName) for which to
        request a certificate.
    :param key: A Cryptography private key object.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    :return: The certificate request message.
    """
    if len(names) == 0:
        raise ValueError('Must have at least one name')
    if len(names[0]) > 64:
        common_name = u'san.too.long.invalid'
    else:
        common_name = names[0]
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .add_extension(
            x509.SubjectAlternativeName(list(map(x509.DNSName, names))),
            critical=False)
        .sign(key, hashes.SHA256(), default_backend()))


def csr_der(csr):
    """
    The DER encoding of a CSR, as `Client.new_certificate` expects it.

    :param cryptography.x509.CertificateSigningRequest csr: The CSR.

    :rtype: bytes
    """
    return csr.public_bytes(serialization.Encoding.DER)


def check_directory_url_type(url):
    """
    Check that ``url`` is a ``twisted.python.url.URL`` instance, raising
    `TypeError` if it isn't.
    """
    if not isinstance(url, URL):
        raise TypeError(
            'ACME directory URL should be a twisted.python.url.URL, '
            'got {!r} instead'.format(url))


__all__ = [
    'from_standard_b64', 'to_standard_b64', 'b64enc', 'b64dec',
    'is_b64_string', 'fields_present', 'valid_jwk', 'valid_signature',
    'key_fingerprint', 'extend', 'extract', 'filter_items', 'is_domain_name',
    'generate_private_key', 'tap', 'csr_for_names', 'csr_der',
    'check_directory_url_type']
