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

import re

__all__ = [
    'canonicalize_body',
    'canonicalize_header_field',
    'CanonicalizationPolicy',
    'InvalidCanonicalizationPolicyError',
    'Relaxed',
    'Simple',
    ]


class InvalidCanonicalizationPolicyError(Exception):
    """The c= value could not be parsed."""
    pass


def strip_trailing_lines(body):
    """Remove every empty line at the end of body, and the final CRLF."""
    return re.sub(b"(\r\n)*\\Z", b"", body, count=1)


class Simple:
    """Class that represents the "simple" canonicalization algorithm."""

    name = b"simple"

    @staticmethod
    def canonicalize_headers(headers):
        # No changes to headers.
        return headers

    @staticmethod
    def canonicalize_body(body):
        # Ignore all empty lines at the end of the message body.  An empty
        # body is a single CRLF.
        return strip_trailing_lines(body) + b"\r\n"


class Relaxed:
    """Class that represents the "relaxed" canonicalization algorithm."""

    name = b"relaxed"

    @staticmethod
    def canonicalize_headers(headers):
        # Convert all header field names to lowercase.
        # Unfold all header lines.
        # Compress WSP to single space.
        # Remove all WSP at the start or end of the field value (strip).
        return [
            (x[0].strip().lower(),
             re.sub(br"\s+", b" ", re.sub(b"\r?\n", b"", x[1])).strip()
             + b"\r\n")
            for x in headers]

    @staticmethod
    def canonicalize_body(body):
        # Remove all trailing WSP at end of lines.
        removed_trailing_wsp = re.sub(
            b"[\\x09\\x20]+(\r\n|\\Z)", b"\\1", body)
        # Compress non-line-ending WSP to single space.
        compressed_wsp = re.sub(br"[\x09\x20]+", b" ", removed_trailing_wsp)
        # Ignore all empty lines at the end of the message body.  Unlike
        # simple, an empty body stays empty.
        removed_trailing_lines = strip_trailing_lines(compressed_wsp)
        if not removed_trailing_lines:
            return b""
        return removed_trailing_lines + b"\r\n"


ALGORITHMS = dict((c.name, c) for c in (Simple, Relaxed))


def _algorithm(name):
    try:
        if isinstance(name, str):
            name = name.encode('ascii')
        return ALGORITHMS[name]
    except (KeyError, UnicodeEncodeError):
        raise InvalidCanonicalizationPolicyError(name)


def canonicalize_header_field(name, value, mode):
    """Canonicalize a single header field.

    @param name: the field name, as it appears before the colon
    @param value: the raw field value following the colon, including
        any folding and the terminating CRLF
    @param mode: C{b'simple'} or C{b'relaxed'}
    @return: the canonical C{name:value} byte string

    >>> canonicalize_header_field(b'Subject', b' Is dinner\\r\\n  ready?\\r\\n', b'relaxed')
    b'subject:Is dinner ready?\\r\\n'
    >>> canonicalize_header_field(b'X-Empty', b'\\r\\n', b'relaxed')
    b'x-empty:\\r\\n'
    """
    # RFC 6376 3.4.2: relaxed output has no whitespace around the colon.
    [(name, value)] = _algorithm(mode).canonicalize_headers([(name, value)])
    return name + b":" + value


def canonicalize_body(body, mode):
    """Canonicalize a message body.

    >>> canonicalize_body(b'', b'simple')
    b'\\r\\n'
    >>> canonicalize_body(b'', b'relaxed')
    b''
    """
    return _algorithm(mode).canonicalize_body(body)


class CanonicalizationPolicy:
    """The pair of header and body algorithms named by a c= value."""

    def __init__(self, header_algorithm, body_algorithm):
        self.header_algorithm = header_algorithm
        self.body_algorithm = body_algorithm

    @classmethod
    def from_c_value(cls, c):
        """Construct the canonicalization policy described by a c= value.

        May raise an InvalidCanonicalizationPolicyError if the given
        value is invalid.

        @param c: c= value from a DKIM-Signature header field, or None
        when the tag is absent.
        @return: a L{CanonicalizationPolicy}
        """
        if c is None:
            c = b'simple/simple'
        m = c.split(b'/')
        if len(m) not in (1, 2):
            raise InvalidCanonicalizationPolicyError(c)
        if len(m) == 1:
            m.append(b'simple')
        can_headers, can_body = m
        return cls(_algorithm(can_headers), _algorithm(can_body))

    @classmethod
    def from_pair(cls, header, body):
        """Construct a policy from signing options.

        An empty or None value selects the default, "simple".
        """
        return cls(_algorithm(header or b'simple'), _algorithm(body or b'simple'))

    def to_c_value(self):
        return b'/'.join(
            (self.header_algorithm.name, self.body_algorithm.name))

    def canonicalize_headers(self, headers):
        return self.header_algorithm.canonicalize_headers(headers)

    def canonicalize_body(self, body):
        return self.body_algorithm.canonicalize_body(body)
