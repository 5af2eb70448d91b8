"""
Eliot message and action definitions.
"""
from operator import methodcaller

from eliot import ActionType, Field, MessageType, fields

NONCE = Field.for_types(u'nonce', [str], u'A nonce value')

URL = Field.for_types(u'url', [str], u'The URL of a request')

LOCATION = Field.for_types(
    u'location', [str, None], u'The Location header field')

LOG_JWS_SIGN = ActionType(
    u'txboulder:jws:sign',
    fields(NONCE),
    fields(),
    u'Signing a message with JWS')

LOG_JWS_HEAD = ActionType(
    u'txboulder:jws:http:head',
    fields(URL),
    fields(),
    u'A JWSClient HEAD request')

LOG_JWS_GET = ActionType(
    u'txboulder:jws:http:get',
    fields(URL),
    fields(),
    u'A JWSClient GET request')

LOG_JWS_POST = ActionType(
    u'txboulder:jws:http:post',
    fields(URL, binary=bool),
    fields(),
    u'A JWSClient POST request')

LOG_JWS_REQUEST = ActionType(
    u'txboulder:jws:http:request',
    fields(URL, method=str),
    fields(Field.for_types(u'content_type',
                           [str, None],
                           u'Content-Type header field'),
           code=int),
    u'A JWSClient request')

LOG_JWS_GET_NONCE = ActionType(
    u'txboulder:jws:nonce:get',
    fields(URL),
    fields(NONCE),
    u'Consuming a nonce')

LOG_JWS_ADD_NONCE = MessageType(
    u'txboulder:jws:nonce:add',
    fields(NONCE),
    u'Adding a nonce')

LOG_HTTP_PARSE_LINKS = ActionType(
    u'txboulder:http:parse-links',
    fields(Field.for_types(u'raw_link', [str, None], u'Link header field')),
    fields(parsed_links=dict),
    u'Parsing HTTP Links')

LOG_ACME_CONSUME_DIRECTORY = ActionType(
    u'txboulder:acme:client:directory',
    fields(URL),
    fields(directory=dict),
    u'Fetching the directory of an ACME server')

LOG_ACME_REGISTER = ActionType(
    u'txboulder:acme:client:registration:create',
    fields(Field(u'registration',
                 methodcaller('to_json'),
                 u'An ACME registration')),
    fields(LOCATION),
    u'Registering with an ACME server')

LOG_ACME_UPDATE_REGISTRATION = ActionType(
    u'txboulder:acme:client:registration:update',
    fields(Field(u'registration',
                 methodcaller('to_json'),
                 u'An ACME registration'),
           uri=str),
    fields(),
    u'Updating a registration')

LOG_ACME_CREATE_AUTHORIZATION = ActionType(
    u'txboulder:acme:client:authorization:create',
    fields(Field(u'identifier',
                 methodcaller('to_json'),
                 u'An identifier')),
    fields(LOCATION),
    u'Creating an authorization')

LOG_ACME_ANSWER_CHALLENGE = ActionType(
    u'txboulder:acme:client:challenge:answer',
    fields(Field(u'response',
                 methodcaller('to_json'),
                 u'The challenge response'),
           uri=str),
    fields(),
    u'Answering an authorization challenge')

LOG_ACME_POLL_AUTHORIZATION = ActionType(
    u'txboulder:acme:client:authorization:poll',
    fields(uri=str),
    fields(status=str),
    u'Polling an authorization')

LOG_ACME_REQUEST_CERTIFICATE = ActionType(
    u'txboulder:acme:client:certificate:create',
    fields(),
    fields(LOCATION),
    u'Requesting a certificate')
