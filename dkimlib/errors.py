# This software is provided 'as-is', without any express or implied
# warranty.  In no event will the author be held liable for any damages
# arising from the use of this software.
#
# Permission is granted to anyone to use this software for any purpose,
# including commercial applications, and to alter it and redistribute it
# freely, subject to the following restrictions:
#
# 1. The origin of this software must not be misrepresented; you must not
#    claim that you wrote the original software. If you use this software
#    in a product, an acknowledgment in the product documentation would be
#    appreciated but is not required.
# 2. Altered source versions must be plainly marked as such, and must not be
#    misrepresented as being the original software.
# 3. This notice may not be removed or altered from any source distribution.
#
# Copyright (c) 2008 Greg Hewgill http://hewgill.com
#
# This has been modified from the original software.
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

__all__ = [
    'BodyHashMismatch',
    'DKIMException',
    'InternalError',
    'InvalidSignature',
    'KeyFormatError',
    'KeyUnavailable',
    'MalformedSignature',
    'MessageFormatError',
    'MissingDomain',
    'MissingFromHeader',
    'MissingSelector',
    'MissingSigningKey',
    'ParameterError',
    'SignatureExpired',
    'UnsupportedAlgorithm',
    'UnsupportedCanonicalization',
    'ValidationError',
    ]


class DKIMException(Exception):
    """Base class for DKIM errors."""
    kind = 'error'
    retryable = False


class InternalError(DKIMException):
    """Internal error in dkimlib. Should never happen."""
    kind = 'internal-error'


class MessageFormatError(DKIMException):
    """RFC822 message format error."""
    kind = 'message-format'


class ParameterError(DKIMException):
    """Input parameter error."""
    kind = 'invalid-options'


class MissingDomain(ParameterError):
    kind = 'missing-domain'


class MissingSelector(ParameterError):
    kind = 'missing-selector'


class MissingSigningKey(ParameterError):
    kind = 'missing-signing-key'


class MissingFromHeader(ParameterError):
    """The From header field was not in the list of headers to sign."""
    kind = 'missing-from-header'


class UnsupportedAlgorithm(ParameterError):
    """Hash or signature algorithm outside the supported set."""
    kind = 'unsupported-algorithm'


class UnsupportedCanonicalization(ParameterError):
    kind = 'unsupported-canonicalization'


class ValidationError(DKIMException):
    """Validation error.

    Raised while checking one signature; the verifier reports it as the
    outcome of that signature instead of letting it propagate.
    """
    kind = 'validation'


class MalformedSignature(ValidationError):
    """A DKIM-Signature header field could not be parsed.

    domain and selector hold whatever could be salvaged from the field.
    """
    kind = 'malformed-signature'

    def __init__(self, message, domain=None, selector=None):
        ValidationError.__init__(self, message)
        self.domain = domain
        self.selector = selector


class BodyHashMismatch(ValidationError):
    kind = 'body-hash-mismatch'


class KeyUnavailable(ValidationError):
    """The public key could not be retrieved; retrying later may help."""
    kind = 'key-unavailable'
    retryable = True


class KeyFormatError(ValidationError):
    """Key format error while parsing an RSA or Ed25519 key."""
    kind = 'invalid-key'


class SignatureExpired(ValidationError):
    kind = 'signature-expired'


class InvalidSignature(ValidationError):
    kind = 'invalid-signature'
