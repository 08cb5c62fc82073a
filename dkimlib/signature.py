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

import base64
import binascii
import re

from dkimlib.errors import MalformedSignature
from dkimlib.util import (
    InvalidTagValueList,
    parse_tag_value,
    )

__all__ = [
    'fold',
    'format_signature',
    'identity_in_domain',
    'parse_signature',
    'SignatureParameters',
    'strip_b_value',
    ]

#: Tags every DKIM-Signature must carry (RFC6376 section 3.5).
MANDATORY_TAGS = (b'v', b'a', b'b', b'bh', b'd', b'h', b's')

#: Tags this module interprets; any other tag is kept aside and ignored.
KNOWN_TAGS = MANDATORY_TAGS + (b'c', b'i', b'l', b'q', b't', b'x')

#: Folded lines are at most this long, not counting the CRLF and the
#: leading SP of continuation lines.
FOLD_WIDTH = 75

# FWS  =  ([*WSP CRLF] 1*WSP) /  obs-FWS ; Folding white space  [RFC5322]
FWS = br'(?:(?:\s*\r?\n)?\s+)?'
RE_BTAG = re.compile(
    br'((?:\A|[;\s])b' + FWS + br'=)[\s0-9A-Za-z+/=]*?(?=;|\s*\Z)')


class SignatureParameters(object):
    """The tag=value set of one DKIM-Signature header field.

    Values are byte strings, except timestamp, expiration and length
    which are integers, and headers which is the list of h= names in
    order.
    """

    def __init__(self, algorithm, domain, selector, headers,
                 body_hash=b'', signature=b'', canonicalization=None,
                 timestamp=None, expiration=None, length=None,
                 identity=None, query=None, version=b'1', unknown=None):
        self.version = version
        self.algorithm = algorithm
        self.canonicalization = canonicalization
        self.domain = domain
        self.selector = selector
        self.headers = list(headers)
        self.body_hash = body_hash
        self.signature = signature
        self.timestamp = timestamp
        self.expiration = expiration
        self.length = length
        self.identity = identity
        self.query = query
        #: Tags not interpreted here, kept for inspection only.
        self.unknown = unknown or {}

    def tags(self):
        """Return the (tag, value) pairs in rendering order: alphabetical,
        with b= last so its value can be filled in after hashing."""
        def num(n):
            if n is None:
                return None
            return str(n).encode('ascii')
        tags = [
            (b'a', self.algorithm),
            (b'bh', self.body_hash),
            (b'c', self.canonicalization),
            (b'd', self.domain),
            (b'h', b':'.join(self.headers)),
            (b'i', self.identity),
            (b'l', num(self.length)),
            (b'q', self.query),
            (b's', self.selector),
            (b't', num(self.timestamp)),
            (b'v', self.version),
            (b'x', num(self.expiration)),
        ]
        return [x for x in tags if x[1] is not None] + [(b'b', self.signature)]

    def __repr__(self):
        return '<SignatureParameters %r>' % (self.tags(),)


def fold(header):
    """Fold a header line into CRLF SP separated chunks of FOLD_WIDTH octets.

    Chunks are cut at fixed offsets, not at whitespace, so a fold may
    fall inside a tag value.  parse_signature removes the resulting
    whitespace from every value it interprets.

    >>> fold(b'foo')
    b'foo'
    >>> fold(b'foo' * 26) == b'foo' * 25 + b'\\r\\n foo'
    True
    """
    return b"\r\n ".join(
        header[i:i + FOLD_WIDTH] for i in range(0, len(header), FOLD_WIDTH))


def format_signature(params, name=b'DKIM-Signature'):
    """Render a complete, folded header field line terminated by CRLF.

    With params.signature empty the result is the skeleton that gets
    hashed; rendering again once b= is known changes nothing before b=.
    """
    line = name + b": " + b" ".join(
        k + b"=" + v + b";" for k, v in params.tags())
    return fold(line) + b"\r\n"


def strip_b_value(value):
    """Empty the b= value of a signature header field value.

    The value and any whitespace around it are removed, as RFC6376
    section 3.7 requires for the copy of the field fed to the header
    hash.

    >>> strip_b_value(b' v=1; b=abc\\r\\n def=; bh=xyz=;\\r\\n')
    b' v=1; b=; bh=xyz=;\\r\\n'
    """
    return RE_BTAG.sub(b'\\1', value)


def identity_in_domain(identity, domain):
    """Whether the domain of i= is d= or one of its subdomains."""
    if b'@' not in identity:
        return False
    idomain = identity.rpartition(b'@')[2].lower()
    domain = domain.lower()
    return idomain == domain or idomain.endswith(b'.' + domain)


def _compact(value):
    if value is None:
        return None
    return re.sub(br"\s+", b"", value)


def _salvage(tag, text):
    m = re.search(br"(?:\A|;)\s*" + tag + br"\s*=([^;]*)", text)
    if m is None:
        return None
    return _compact(m.group(1)) or None


def _decimal(tags, tag, malformed, digits=None):
    if tag not in tags:
        return None
    value = tags[tag]
    if re.match(br"\d+\Z", value) is None or (
            digits is not None and len(value) > digits):
        raise malformed(
            "%s= value is not a decimal integer (%r)" % (tag.decode(), value))
    return int(value)


def parse_signature(value):
    """Parse the value of a DKIM-Signature header field.

    Basic checks for presence and correct formatting of mandatory fields
    are done here.  Support for the algorithms named is not checked.

    @param value: the raw field value, possibly folded
    @return: L{SignatureParameters}
    @raise MalformedSignature: if the value cannot be used; the exception
    carries the d= and s= values when they could be recovered.
    """
    unfolded = re.sub(b"\r?\n", b"", value)
    try:
        raw = parse_tag_value(unfolded)
    except InvalidTagValueList as e:
        raise MalformedSignature(
            "invalid tag list: %r" % (e.args[0] if e.args else e,),
            _salvage(b'd', unfolded), _salvage(b's', unfolded))

    tags = {}
    unknown = {}
    for k, v in raw.items():
        if k in KNOWN_TAGS:
            tags[k] = _compact(v)
        else:
            unknown[k] = v

    domain = tags.get(b'd') or None
    selector = tags.get(b's') or None

    def malformed(msg):
        return MalformedSignature(msg, domain, selector)

    for field in MANDATORY_TAGS:
        if field not in tags:
            raise malformed("signature missing %s=" % field.decode())
    if tags[b'v'] != b"1":
        raise malformed("v= value is not 1 (%r)" % tags[b'v'])
    for field in (b'a', b'd', b's', b'h'):
        if not tags[field]:
            raise malformed("%s= value is empty" % field.decode())
    for field in (b'b', b'bh'):
        try:
            if not base64.b64decode(tags[field], validate=True):
                raise malformed("%s= value is empty" % field.decode())
        except binascii.Error as e:
            raise malformed("%s= value is not valid base64 (%r): %s" %
                            (field.decode(), tags[field], e))
    headers = tags[b'h'].split(b':')
    if not all(headers):
        raise malformed("h= value has an empty field name (%r)" % tags[b'h'])
    if b'i' in tags and not identity_in_domain(tags[b'i'], domain):
        raise malformed(
            "i= domain is not a subdomain of d= (i=%r d=%r)" %
            (tags[b'i'], domain))
    if b'q' in tags and b'dns/txt' not in tags[b'q'].split(b':'):
        raise malformed("q= value is not dns/txt (%r)" % tags[b'q'])
    length = _decimal(tags, b'l', malformed, digits=76)
    timestamp = _decimal(tags, b't', malformed)
    expiration = _decimal(tags, b'x', malformed)
    if timestamp is not None and expiration is not None and \
            expiration < timestamp:
        raise malformed(
            "x= value is less than t= value (x=%d t=%d)" %
            (expiration, timestamp))

    return SignatureParameters(
        version=tags[b'v'],
        algorithm=tags[b'a'].lower(),
        canonicalization=tags.get(b'c'),
        domain=domain,
        selector=selector,
        headers=headers,
        body_hash=tags[b'bh'],
        signature=tags[b'b'],
        timestamp=timestamp,
        expiration=expiration,
        length=length,
        identity=tags.get(b'i'),
        query=tags.get(b'q'),
        unknown=unknown,
        )
