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

from dkimlib.crypto import HASH_ALGORITHMS
from dkimlib.errors import UnsupportedAlgorithm
from dkimlib.signature import strip_b_value

__all__ = [
    'body_hash',
    'get_hasher',
    'hash_headers',
    'HashThrough',
    'header_digest',
    'select_headers',
    ]


class HashThrough(object):
    """Hash object wrapper that can remember what went into the hash."""

    def __init__(self, hasher, debug=False):
        self.data = []
        self.hasher = hasher
        self.name = hasher.name
        self.debug = debug

    def update(self, data):
        if self.debug:
            self.data.append(data)
        return self.hasher.update(data)

    def digest(self):
        return self.hasher.digest()

    def hexdigest(self):
        return self.hasher.hexdigest()

    def hashed(self):
        return b''.join(self.data)


def get_hasher(name):
    """Return the hashlib constructor for a DKIM hash name.

    @raise UnsupportedAlgorithm: for any name outside HASH_ALGORITHMS
    """
    if isinstance(name, str):
        name = name.encode('ascii')
    try:
        return HASH_ALGORITHMS[name]
    except KeyError:
        raise UnsupportedAlgorithm("unsupported hash algorithm: %r" % name)


def body_hash(body, algorithm=b'sha256', length=None):
    """Compute the bh= value for a canonicalized body.

    @param body: canonicalized body
    @param algorithm: hash name, C{b'sha256'} or C{b'sha1'}
    @param length: when not None, only the first length octets are hashed
    @return: base64 encoded digest

    >>> body_hash(b'\\r\\n')
    b'frcCV1k9oG9oKj3dpUqdJg1PxRT2RSN/XKdLCPjaYaY='
    """
    hasher = get_hasher(algorithm)
    if length is not None:
        body = body[:length]
    return base64.b64encode(hasher(body).digest())


def select_headers(headers, include_headers):
    """Select message header fields to be signed/verified.

    Each name takes the last occurrence not already used by the same
    name, so a repeated name walks up the header from the bottom.
    Names with no (remaining) occurrence are skipped.

    >>> h = [('from','biz'),('foo','bar'),('from','baz'),('subject','boring')]
    >>> i = ['from','subject','to','from']
    >>> select_headers(h,i)
    [('from', 'baz'), ('subject', 'boring'), ('from', 'biz')]
    >>> h = [('From','biz'),('Foo','bar'),('Subject','Boring')]
    >>> i = ['from','subject','to','from']
    >>> select_headers(h,i)
    [('From', 'biz'), ('Subject', 'Boring')]
    """
    sign_headers = []
    lastindex = {}
    for h in include_headers:
        assert h == h.lower()
        i = lastindex.get(h, len(headers))
        while i > 0:
            i -= 1
            if h == headers[i][0].lower():
                sign_headers.append(headers[i])
                break
        lastindex[h] = i
    return sign_headers


def hash_headers(hasher, canonicalize_headers, headers, include_headers,
                 sigheader):
    """Update hash for signed message header fields.

    @param hasher: hash object to update
    @param canonicalize_headers: object with a canonicalize_headers method
    @param headers: the message header fields, already canonicalized
    @param include_headers: lowercase names from h=, in order
    @param sigheader: (name, value) of the signature field as it appears
        in the message; its b= value is emptied before hashing
    @return: the selected header fields
    """
    sign_headers = select_headers(headers, include_headers)
    cheaders = canonicalize_headers.canonicalize_headers(
        [(sigheader[0], strip_b_value(sigheader[1]))])
    # the dkim sig is hashed with no trailing crlf, even if the
    # canonicalization algorithm would add one.
    for x, y in sign_headers + [(x, y.rstrip(b"\r\n")) for x, y in cheaders]:
        hasher.update(x)
        hasher.update(b":")
        hasher.update(y)
    return sign_headers


def header_digest(algorithm, canonicalize_headers, headers, include_headers,
                  sigheader, debug=False):
    """Compute the header hash covered by the b= signature.

    @return: (hash object, selected header fields)
    """
    h = HashThrough(get_hasher(algorithm)(), debug)
    sign_headers = hash_headers(
        h, canonicalize_headers, headers, include_headers, sigheader)
    return h, sign_headers
