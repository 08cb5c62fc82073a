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
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import unittest

from dkimlib.canonicalization import (
    canonicalize_body,
    canonicalize_header_field,
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    Relaxed,
    Simple,
    )


class BaseCanonicalizationTest(unittest.TestCase):

    def assertCanonicalForm(self, expected, input):
        self.assertEqual(expected, self.func(expected))
        self.assertEqual(expected, self.func(input))


class TestSimpleAlgorithmHeaders(BaseCanonicalizationTest):

    func = staticmethod(Simple.canonicalize_headers)

    def test_untouched(self):
        test_headers = [(b'Foo  ', b'bar\r\n'), (b'Foo', b'baz\r\n')]
        self.assertCanonicalForm(
            test_headers,
            test_headers)


class TestSimpleAlgorithmBody(BaseCanonicalizationTest):

    func = staticmethod(Simple.canonicalize_body)

    def test_strips_trailing_empty_lines_from_body(self):
        self.assertCanonicalForm(
            b'Foo  \tbar    \r\n',
            b'Foo  \tbar    \r\n\r\n')

    def test_adds_final_crlf(self):
        self.assertCanonicalForm(
            b'Foo\r\n\r\nbar\r\n',
            b'Foo\r\n\r\nbar')

    def test_empty_body_is_one_crlf(self):
        self.assertCanonicalForm(b'\r\n', b'')
        self.assertEqual(b'\r\n', self.func(b'\r\n\r\n\r\n'))


class TestRelaxedAlgorithmHeaders(BaseCanonicalizationTest):

    func = staticmethod(Relaxed.canonicalize_headers)

    def test_lowercases_names(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar\r\n'), (b'baz', b'Foo\r\n')],
            [(b'Foo', b'Bar\r\n'), (b'BaZ', b'Foo\r\n')])

    def test_unfolds_values(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo', b'Bar\r\n baz\r\n')])

    def test_wsp_compresses_values(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo', b'Bar \t baz\r\n')])

    def test_wsp_strips(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo  ', b'   Bar \t baz   \r\n')])


class TestRelaxedAlgorithmBody(BaseCanonicalizationTest):

    func = staticmethod(Relaxed.canonicalize_body)

    def test_strips_trailing_wsp(self):
        self.assertCanonicalForm(
            b'Foo\r\nbar\r\n',
            b'Foo  \t\r\nbar\r\n')

    def test_wsp_compresses(self):
        self.assertCanonicalForm(
            b'Foo bar\r\n',
            b'Foo  \t  bar\r\n')

    def test_strips_trailing_empty_lines(self):
        self.assertCanonicalForm(
            b'Foo\r\nbar\r\n',
            b'Foo\r\nbar\r\n\r\n\r\n')

    def test_empty_body_stays_empty(self):
        self.assertCanonicalForm(b'', b'')
        self.assertEqual(b'', self.func(b'\r\n\r\n'))
        self.assertEqual(b'', self.func(b'  \r\n\t\r\n'))

    def test_adds_final_crlf(self):
        self.assertCanonicalForm(b'Foo\r\n', b'Foo  ')


class TestHelpers(unittest.TestCase):

    def test_simple_header_field(self):
        self.assertEqual(
            b'Subject: Is dinner ready?\r\n',
            canonicalize_header_field(
                b'Subject', b' Is dinner ready?\r\n', b'simple'))

    def test_relaxed_header_field(self):
        self.assertEqual(
            b'subject:Is dinner ready?\r\n',
            canonicalize_header_field(
                b'SubJect ', b'  Is \tdinner\r\n ready?  \r\n', b'relaxed'))

    def test_relaxed_is_idempotent(self):
        once = canonicalize_body(b'a  b \r\n\r\n c\t\r\n\r\n', b'relaxed')
        self.assertEqual(once, canonicalize_body(once, b'relaxed'))
        [(name, value)] = Relaxed.canonicalize_headers(
            [(b'X-Test ', b' a \r\n  b  \r\n')])
        self.assertEqual(
            [(name, value)], Relaxed.canonicalize_headers([(name, value)]))

    def test_unknown_mode(self):
        self.assertRaises(
            InvalidCanonicalizationPolicyError,
            canonicalize_body, b'', b'pasta')
        self.assertRaises(
            InvalidCanonicalizationPolicyError,
            canonicalize_body, b'', 'päste')


class TestCanonicalizationPolicy(unittest.TestCase):

    def test_absent_is_simple_simple(self):
        policy = CanonicalizationPolicy.from_c_value(None)
        self.assertEqual(b'simple/simple', policy.to_c_value())

    def test_header_only_defaults_body_to_simple(self):
        policy = CanonicalizationPolicy.from_c_value(b'relaxed')
        self.assertEqual(b'relaxed/simple', policy.to_c_value())

    def test_pair(self):
        policy = CanonicalizationPolicy.from_c_value(b'simple/relaxed')
        self.assertIs(Simple, policy.header_algorithm)
        self.assertIs(Relaxed, policy.body_algorithm)

    def test_invalid_c_values(self):
        for c in (b'pasta', b'relaxed/pasta', b'simple/simple/simple', b''):
            self.assertRaises(
                InvalidCanonicalizationPolicyError,
                CanonicalizationPolicy.from_c_value, c)

    def test_empty_options_select_simple(self):
        policy = CanonicalizationPolicy.from_pair(b'', None)
        self.assertEqual(b'simple/simple', policy.to_c_value())
        policy = CanonicalizationPolicy.from_pair('relaxed', 'relaxed')
        self.assertEqual(b'relaxed/relaxed', policy.to_c_value())

    def test_invalid_option(self):
        self.assertRaises(
            InvalidCanonicalizationPolicyError,
            CanonicalizationPolicy.from_pair, b'simple', b'potatoe')
