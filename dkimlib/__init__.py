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
#
# This has been modified from the original software.
# Copyright (c) 2016 Google, Inc.
# Contact: Brandon Long <blong@google.com>
#
# This has been modified from the original software.
# Copyright (c) 2016 Scott Kitterman <scott@kitterman.com>
#


import base64
import binascii
import re
import time

from dkimlib.canonicalization import (
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    )
from dkimlib.crypto import (
    DigestTooLargeError,
    ed25519_verify,
    HASH_ALGORITHMS,
    load_private_key,
    parse_ed25519_public_key,
    parse_public_key,
    RSASSA_PKCS1_v1_5_verify,
    SIGNATURE_ALGORITHMS,
    UnparsableKeyError,
    )
from dkimlib.digest import (
    body_hash,
    header_digest,
    )
from dkimlib.dnsplug import get_txt
from dkimlib.errors import (
    BodyHashMismatch,
    DKIMException,
    InternalError,
    InvalidSignature,
    KeyFormatError,
    KeyUnavailable,
    MalformedSignature,
    MessageFormatError,
    MissingDomain,
    MissingFromHeader,
    MissingSelector,
    MissingSigningKey,
    ParameterError,
    SignatureExpired,
    UnsupportedAlgorithm,
    UnsupportedCanonicalization,
    ValidationError,
    )
from dkimlib.signature import (
    format_signature,
    identity_in_domain,
    parse_signature,
    SignatureParameters,
    )
from dkimlib.util import (
    get_default_logger,
    InvalidTagValueList,
    parse_tag_value,
    )

__all__ = [
    "BodyHashMismatch",
    "DKIMException",
    "InternalError",
    "InvalidSignature",
    "KeyFormatError",
    "KeyUnavailable",
    "MalformedSignature",
    "MessageFormatError",
    "MissingDomain",
    "MissingFromHeader",
    "MissingSelector",
    "MissingSigningKey",
    "ParameterError",
    "Relaxed",
    "Simple",
    "SignatureExpired",
    "UnsupportedAlgorithm",
    "UnsupportedCanonicalization",
    "ValidationError",
    "DKIM",
    "VerificationResult",
    "sign",
    "verify",
]

Relaxed = b'relaxed'    # for clients passing dkimlib.Relaxed
Simple = b'simple'      # for clients passing dkimlib.Simple

#: Leeway for signers with inaccurate clocks when checking t= and x=.
CLOCK_SLOP = 36000


def bitsize(x):
    """Return size of long in bits."""
    return len(bin(x)) - 2


def _bytes(s):
    if isinstance(s, str):
        return s.encode('ascii')
    return s


def rfc822_parse(message):
    """Parse a message in RFC822 format.

    @param message: The message in RFC822 format. Either CRLF or LF is an accepted line separator.
    @return: Returns a tuple of (headers, body) where headers is a list of (name, value) pairs.
    The body is a CRLF-separated string.
    @raise MessageFormatError: when the header block cannot be split into fields.

    >>> rfc822_parse(b'Subject: hi\\r\\n  there\\r\\nTo: x\\r\\n\\r\\nbody')
    ([(b'Subject', b' hi\\r\\n  there\\r\\n'), (b'To', b' x\\r\\n')], b'body')
    """
    headers = []
    lines = re.split(b"\r?\n", message)
    i = 0
    while i < len(lines):
        if len(lines[i]) == 0:
            # End of headers, return what we have plus the body, excluding the blank line.
            i += 1
            break
        if lines[i][0] in (0x09, 0x20):
            if not headers:
                raise MessageFormatError(
                    "Continuation line before first header field: %r" % lines[i])
            headers[-1][1] += lines[i] + b"\r\n"
        else:
            m = re.match(br"([\x21-\x7e]+?):", lines[i])
            if m is not None:
                headers.append([m.group(1), lines[i][m.end(0):] + b"\r\n"])
            elif lines[i].startswith(b"From "):
                pass
            else:
                raise MessageFormatError(
                    "Unexpected characters in RFC822 header: %r" % lines[i])
        i += 1
    return ([tuple(x) for x in headers], b"\r\n".join(lines[i:]))


def evaluate_pk(name, s):
    """Parse a DKIM key record.

    @param name: the DNS name the record was found at, for messages
    @param s: the TXT record value
    @return: (public key, key size in bits, k= value, list of acceptable
    hashes or None)
    @raise KeyUnavailable: if there is no record
    @raise KeyFormatError: if the record is unusable
    """
    if not s:
        raise KeyUnavailable("missing public key: %s" % name)
    try:
        s = _bytes(s)
        pub = parse_tag_value(s)
    except (InvalidTagValueList, UnicodeEncodeError) as e:
        raise KeyFormatError("could not parse key record %s: %s" % (name, e))
    if b'v' in pub and (pub[b'v'] != b'DKIM1' or list(pub)[0] != b'v'):
        raise KeyFormatError("bad key record version: %s" % s)
    try:
        p = re.sub(br"\s+", b"", pub[b'p'])
    except KeyError:
        raise KeyFormatError("incomplete public key: %s" % s)
    if not p:
        raise KeyFormatError("public key revoked: %s" % name)
    services = [x.strip() for x in pub.get(b's', b'*').split(b':')]
    if b'*' not in services and b'email' not in services:
        raise KeyFormatError("key not for use with email: %s" % s)
    hashes = None
    if b'h' in pub:
        hashes = [x.strip() for x in pub[b'h'].split(b':')]
    ktag = pub.get(b'k', b'rsa')
    try:
        keydata = base64.b64decode(p)
        if ktag == b'rsa':
            pk = parse_public_key(keydata)
            keysize = bitsize(pk['modulus'])
        elif ktag == b'ed25519':
            pk = parse_ed25519_public_key(keydata)
            keysize = 256
        else:
            raise KeyFormatError("unknown key type: %r" % ktag)
    except (TypeError, binascii.Error, UnparsableKeyError) as e:
        raise KeyFormatError("could not parse public key (%s): %s" % (p, e))
    return pk, keysize, ktag, hashes


class VerificationResult(object):
    """Outcome of checking one DKIM-Signature header field.

    error is None when the signature verified; otherwise it is the
    L{DKIMException} describing the failure, and kind names it.
    """

    def __init__(self, domain=None, selector=None, identity=None,
                 error=None, header=None):
        self.domain = domain
        self.selector = selector
        self.identity = identity
        self.error = error
        #: The (name, value) of the signature header field checked.
        self.header = header

    @property
    def kind(self):
        if self.error is None:
            return 'pass'
        return self.error.kind

    @property
    def valid(self):
        return self.error is None

    @property
    def retryable(self):
        return self.error is not None and self.error.retryable

    def __bool__(self):
        return self.valid

    def __repr__(self):
        return '<VerificationResult d=%r s=%r %s>' % (
            self.domain, self.selector, self.kind)


#: Hold messages and options during DKIM signing and verification.
class DKIM(object):
  # NOTE - the first 2 indentation levels are 2 instead of 4
  # to minimize changed lines from the function only version.

  #: The rfc6376 recommended header fields to sign.  Fields of the
  #: message named here make up the default list of headers to sign.
  SHOULD = (
    b'from', b'sender', b'reply-to', b'subject', b'date', b'message-id',
    b'to', b'cc', b'mime-version', b'content-type',
    b'content-transfer-encoding', b'content-id', b'content-description',
    b'resent-date', b'resent-from', b'resent-sender', b'resent-to',
    b'resent-cc', b'resent-message-id', b'in-reply-to', b'references',
    b'list-id', b'list-help', b'list-unsubscribe', b'list-subscribe',
    b'list-post', b'list-owner', b'list-archive'
  )

  #: The rfc6376 recommended header fields not to sign.
  SHOULD_NOT = (
    b'return-path',b'received',b'comments',b'keywords',b'bcc',b'resent-bcc',
    b'dkim-signature'
  )

  #: Create a DKIM instance to sign and verify rfc5322 messages.
  #:
  #: @param message: an RFC822 formatted message to be signed or verified
  #: (with either \\n or \\r\\n line endings)
  #: @param logger: a logger to which debug info will be written (default None)
  #: @param minkey: the minimum key size to accept
  #: @param timeout: number of seconds for a key lookup
  #: @param debug_content: log the exact bytes that are hashed
  #: @raise MessageFormatError: if the message header cannot be parsed
  def __init__(self, message=None, logger=None, minkey=1024, timeout=5,
        debug_content=False):
    self.set_message(message)
    if logger is None:
        logger = get_default_logger()
    self.logger = logger
    self.debug_content = debug_content
    #: Header fields which should be signed.  Default from RFC6376
    self.should_sign = set(DKIM.SHOULD)
    #: Header fields which should not be signed.  The default is from RFC6376.
    #: all_sign_headers leaves these out.
    self.should_not_sign = set(DKIM.SHOULD_NOT)
    #: Minimum public key size.  Shorter RSA keys fail with KeyFormatError.
    #: The default is 1024
    self.minkey = minkey
    self.timeout = timeout

  #: Load a new message to be signed or verified.
  #: @param message: an RFC822 formatted message to be signed or verified
  #: (with either \\n or \\r\\n line endings)
  def set_message(self,message):
    if message:
      self.headers, self.body = rfc822_parse(message)
    else:
      self.headers, self.body = [], b''
    #: The DKIM signing domain last signed or verified.
    self.domain = None
    #: The DKIM key selector last signed or verified.
    self.selector = None
    #: L{SignatureParameters} of the last signature made or parsed.
    self.signature_fields = None
    #: The list of headers last signed or verified.  Each header
    #: is a name,value tuple, canonicalized.
    self.signed_headers = []
    #: The lowercase h= list last signed or verified.
    self.include_headers = ()
    #: The public key size last verified.
    self.keysize = 0

  def default_sign_headers(self):
    """Return the default list of headers to sign: the fields of the
    message whose names are in should_sign, in message order."""
    return [x for x,y in self.headers if x.lower() in self.should_sign]

  def all_sign_headers(self):
    """Return header list of all existing headers not in should_not_sign."""
    return [x for x,y in self.headers if x.lower() not in self.should_not_sign]

  #: Sign an RFC822 message and return the DKIM-Signature header line.
  #:
  #: The include_headers option gives full control over which header fields
  #: are signed.  Note that signing a header field that doesn't exist prevents
  #: that field from being added without breaking the signature.  Repeated
  #: fields (such as Received) can be signed multiple times.  Instances
  #: of the field are signed from bottom to top.
  #:
  #: The length option allows the message body to be appended to by MTAs
  #: enroute (e.g. mailing lists that append unsubscribe information)
  #: without breaking the signature.
  #:
  #: Every option is checked before any hashing or signing is done.
  #:
  #: @param selector: the DKIM selector value for the signature
  #: @param domain: the DKIM domain value for the signature
  #: @param privkey: a signing key handle (see L{dkimlib.crypto}), or a PEM
  #: RSA private key or base64 Ed25519 seed to load one from
  #: @param identity: the DKIM identity value for the signature (default none)
  #: @param canonicalize: the canonicalization algorithms to use; empty
  #: values mean simple (default (Simple, Simple))
  #: @param include_headers: a list of strings indicating which headers
  #: are to be signed (default: the message's fields in should_sign)
  #: @param length: true if the l= tag should be included to indicate
  #: body length signed (default False).
  #: @param hash_algorithm: b'sha256' (default) or b'sha1'
  #: @param timestamp: the t= value (default now)
  #: @param expiration: the x= value (default none)
  #: @param rng: randomness source for RSA blinding (default
  #: random.SystemRandom())
  #: @return: DKIM-Signature header field terminated by '\r\n'
  #: @raise DKIMException: when the options or the key are unusable.
  def sign(self, selector, domain, privkey, identity=None,
        canonicalize=(Simple, Simple), include_headers=None, length=False,
        hash_algorithm=b'sha256', timestamp=None, expiration=None, rng=None):
    try:
        domain = _bytes(domain)
        selector = _bytes(selector)
        identity = _bytes(identity)
        hash_algorithm = _bytes(hash_algorithm)
    except UnicodeEncodeError as e:
        raise ParameterError("Signing options must be ASCII: %s" % e)
    if not domain:
        raise MissingDomain("A signing domain is required")
    if not selector:
        raise MissingSelector("A selector is required")
    if not privkey:
        raise MissingSigningKey("A signing key is required")

    try:
        # str names are encoded by the policy, non-ASCII ones rejected there
        canon_policy = CanonicalizationPolicy.from_pair(*canonicalize)
    except InvalidCanonicalizationPolicyError as e:
        raise UnsupportedCanonicalization(
            "Unsupported canonicalization: %r" % e.args[0])
    if hash_algorithm not in HASH_ALGORITHMS:
        raise UnsupportedAlgorithm(
            "Unsupported hash algorithm: %r" % hash_algorithm)

    if include_headers is None:
        include_headers = self.default_sign_headers()
    try:
        include_headers = [_bytes(x) for x in include_headers]
    except UnicodeEncodeError as e:
        raise ParameterError("Header names must be ASCII: %s" % e)

    # rfc6376 says FROM is required
    if b'from' not in ( x.lower() for x in include_headers ):
        raise MissingFromHeader("The From header field MUST be signed")

    if identity is not None and not identity_in_domain(identity, domain):
        raise ParameterError("identity must be within domain")

    if hasattr(privkey, 'sign'):
        key = privkey
    else:
        try:
            key = load_private_key(privkey)
        except UnparsableKeyError as e:
            raise KeyFormatError(str(e))
    signature_algorithm = key.key_type + b'-' + hash_algorithm
    if signature_algorithm not in SIGNATURE_ALGORITHMS:
        raise UnsupportedAlgorithm(
            "Unsupported signature algorithm: %r" % signature_algorithm)

    headers = canon_policy.canonicalize_headers(self.headers)
    body = canon_policy.canonicalize_body(self.body)
    bodyhash = body_hash(body, hash_algorithm)

    if timestamp is None:
        timestamp = int(time.time())
    sig = SignatureParameters(
        algorithm=signature_algorithm,
        canonicalization=canon_policy.to_c_value(),
        domain=domain,
        selector=selector,
        headers=include_headers,
        body_hash=bodyhash,
        timestamp=timestamp,
        expiration=expiration,
        length=len(body) if length else None,
        identity=identity,
    )
    include_headers = [x.lower() for x in include_headers]
    # record what verify should extract
    self.include_headers = tuple(include_headers)

    # The skeleton is the field with an empty b=; everything before b=
    # renders identically once the signature is filled in.
    name, value = format_signature(sig).split(b":", 1)
    h, self.signed_headers = header_digest(
        hash_algorithm, canon_policy, headers, include_headers, (name, value),
        self.debug_content)
    self.logger.debug("sign headers: %r" % self.signed_headers)
    if self.debug_content:
        self.logger.debug("sign hashed: %r" % h.hashed())

    try:
        sig.signature = base64.b64encode(bytes(key.sign(h, rng)))
    except DigestTooLargeError:
        raise ParameterError("digest too large for modulus")

    self.domain = domain
    self.selector = selector
    self.signature_fields = sig
    return format_signature(sig)

  def signature_headers(self):
    """Return the DKIM-Signature fields of the message, top first."""
    return [(x,y) for x,y in self.headers if x.lower() == b"dkim-signature"]

  def key_name(self, sig):
    return sig.selector + b"._domainkey." + sig.domain + b"."

  def check_times(self, sig, now=None):
    if now is None:
        now = int(time.time())
    if sig.timestamp is not None and sig.timestamp > now + CLOCK_SLOP:
        raise MalformedSignature(
            "t= value is in the future (%d)" % sig.timestamp,
            sig.domain, sig.selector)
    if sig.expiration is not None and sig.expiration < now - CLOCK_SLOP:
        raise SignatureExpired("x= value is past (%d)" % sig.expiration)

  #: Check everything about a signature that needs no public key.
  #: @param sig_header: (header_name, header_value)
  #: @param result: L{VerificationResult} to fill in d=, s= and i= on
  #: @return: (L{SignatureParameters}, key type, header hash object)
  #: @raise DKIMException: when the signature fails one of the checks
  def prepare_signature(self, sig_header, result, now=None):
    try:
        sig = parse_signature(sig_header[1])
    except MalformedSignature as e:
        result.domain, result.selector = e.domain, e.selector
        raise
    result.domain = sig.domain
    result.selector = sig.selector
    result.identity = sig.identity
    self.signature_fields = sig
    self.domain = sig.domain
    self.selector = sig.selector

    logger = self.logger
    logger.debug("sig: %r" % sig)

    try:
        ktype, hash_name = SIGNATURE_ALGORITHMS[sig.algorithm]
    except KeyError:
        raise UnsupportedAlgorithm(
            "unknown signature algorithm: %r" % sig.algorithm)
    try:
        canon_policy = CanonicalizationPolicy.from_c_value(
            sig.canonicalization)
    except InvalidCanonicalizationPolicyError as e:
        raise UnsupportedCanonicalization("invalid c= value: %r" % e.args[0])
    self.check_times(sig, now)

    body = canon_policy.canonicalize_body(self.body)
    bodyhash = body_hash(body, hash_name, sig.length)
    logger.debug("bh: %s" % bodyhash)
    try:
        bh = base64.b64decode(sig.body_hash)
    except (TypeError, binascii.Error) as e:
        raise MalformedSignature(str(e), sig.domain, sig.selector)
    if base64.b64decode(bodyhash) != bh:
        raise BodyHashMismatch(
            "body hash mismatch (got %s, expected %s)" %
            (bodyhash, sig.body_hash))

    include_headers = [x.lower() for x in sig.headers]
    self.include_headers = tuple(include_headers)
    # address bug#644046 by including any additional From header
    # fields when verifying.  Since there should be only one From header,
    # this shouldn't break any legitimate messages.  This could be
    # generalized to check for extras of other singleton headers.
    if b'from' in include_headers:
      include_headers.append(b'from')
    headers = canon_policy.canonicalize_headers(self.headers)
    h, self.signed_headers = header_digest(
        hash_name, canon_policy, headers, include_headers, sig_header,
        self.debug_content)
    if self.debug_content:
        logger.debug("signed for %s: %r" % (sig_header[0], h.hashed()))
    return sig, ktype, h

  #: Check the b= signature against a key record.
  #: @param sig: L{SignatureParameters} from L{prepare_signature}
  #: @param ktype: key type required by a=
  #: @param h: header hash object from L{prepare_signature}
  #: @param name: DNS name the record came from
  #: @param s: the key record
  #: @raise DKIMException: when the key is unusable or the signature
  #: does not verify
  def verify_key(self, sig, ktype, h, name, s):
    pk, self.keysize, ktag, hashes = evaluate_pk(name, s)
    if ktag != ktype:
        raise KeyFormatError(
            "key type %r does not match a=%r" % (ktag, sig.algorithm))
    if hashes is not None and h.name.encode('ascii') not in hashes:
        raise KeyFormatError(
            "key does not allow hash %s: %s" % (h.name, name))
    if ktag == b'rsa' and self.keysize < self.minkey:
        raise KeyFormatError("public key too small: %d" % self.keysize)

    signature = base64.b64decode(sig.signature)
    if ktag == b'rsa':
        try:
            res = RSASSA_PKCS1_v1_5_verify(h, signature, pk)
        except DigestTooLargeError as e:
            raise KeyFormatError("digest too large for modulus: %s" % e)
    else:
        res = ed25519_verify(pk, h, signature)
    self.logger.debug("%s valid: %s" % (name, res))
    if not res:
        raise InvalidSignature("signature did not verify")

  def lookup_failed(self, name, e):
    self.logger.warning("key lookup for %s failed: %s" % (name, e))
    return KeyUnavailable("key lookup for %s failed: %s" % (name, e))

  def record_failure(self, result, e):
    result.error = e
    self.logger.info("%s d=%s s=%s: %s" % (
        e.kind, result.domain, result.selector, e))

  #: Verify one DKIM signature.
  #: @param sig_header: (header_name, header_value) of the signature
  #: @param dnsfunc: function to lookup TXT resource records
  #: @param now: current time, default time.time()
  #: @return: L{VerificationResult}
  def verify_sig(self, sig_header, dnsfunc=get_txt, now=None):
    result = VerificationResult(header=sig_header)
    try:
        sig, ktype, h = self.prepare_signature(sig_header, result, now)
        name = self.key_name(sig)
        try:
            s = dnsfunc(name, timeout=self.timeout)
        except Exception as e:
            raise self.lookup_failed(name, e)
        self.verify_key(sig, ktype, h, name, s)
    except DKIMException as e:
        self.record_failure(result, e)
    return result

  #: Verify every DKIM signature on the message.
  #:
  #: Each DKIM-Signature field is checked on its own; a failure is
  #: reported in the result for that field and does not affect others.
  #: @type dnsfunc: callable
  #: @param dnsfunc: an optional function to lookup TXT resource records
  #: for a DNS domain.  The default uses dnspython.
  #: @param now: current time for t= and x= checks (default time.time())
  #: @return: list of L{VerificationResult}, one per DKIM-Signature field
  #: in header order
  def verify(self, dnsfunc=get_txt, now=None):
    return [self.verify_sig(x, dnsfunc, now) for x in self.signature_headers()]


def sign(message, selector, domain, privkey, identity=None,
         canonicalize=(Simple, Simple), hash_algorithm=b'sha256',
         include_headers=None, length=False, timestamp=None,
         expiration=None, rng=None, logger=None):
    """Sign an RFC822 message and return it with a DKIM-Signature prepended.
    @param message: an RFC822 formatted message (with either \\n or \\r\\n line endings)
    @param selector: the DKIM selector value for the signature
    @param domain: the DKIM domain value for the signature
    @param privkey: a signing key handle, or PEM / base64 key material
    @param identity: the DKIM identity value for the signature (default none)
    @param canonicalize: the canonicalization algorithms to use (default (Simple, Simple))
    @param hash_algorithm: b'sha256' (default) or b'sha1'
    @param include_headers: a list of strings indicating which headers are to be signed (default the message's fields in DKIM.SHOULD)
    @param length: true if the l= tag should be included to indicate body length (default False)
    @param timestamp: the t= value (default now)
    @param expiration: the x= value (default none)
    @param rng: randomness source for RSA blinding (default random.SystemRandom())
    @param logger: a logger to which debug info will be written (default None)
    @return: the signed message
    @raise DKIMException: when the message, options, or key are badly formed.
    """
    d = DKIM(message,logger=logger)
    return d.sign(selector, domain, privkey, identity=identity,
        canonicalize=canonicalize, include_headers=include_headers,
        length=length, hash_algorithm=hash_algorithm, timestamp=timestamp,
        expiration=expiration, rng=rng) + message


def verify(message, logger=None, dnsfunc=get_txt, minkey=1024, timeout=5,
        now=None):
    """Verify every DKIM signature on an RFC822 formatted message.
    @param message: an RFC822 formatted message (with either \\n or \\r\\n line endings)
    @param logger: a logger to which debug info will be written (default None)
    @param dnsfunc: an optional function to lookup TXT resource records
    @param minkey: the minimum RSA key size to accept
    @param timeout: number of seconds for each key lookup
    @param now: current time for t= and x= checks (default time.time())
    @return: list of L{VerificationResult}, one per DKIM-Signature field
    @raise MessageFormatError: if the message cannot be split into header
    and body
    """
    d = DKIM(message,logger=logger,minkey=minkey,timeout=timeout)
    return d.verify(dnsfunc=dnsfunc, now=now)
