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

import logging
import unittest

from dkimlib.util import (
    DuplicateTag,
    get_default_logger,
    InvalidTagSpec,
    parse_tag_value,
    )


class TestParseTagValue(unittest.TestCase):
    """Tag=Value parsing tests."""

    def test_single(self):
        self.assertEqual(
            {b'foo': b'bar'},
            parse_tag_value(b'foo=bar'))

    def test_trailing_separator_ignored(self):
        self.assertEqual(
            {b'foo': b'bar'},
            parse_tag_value(b'foo=bar;'))

    def test_trailing_separator_with_whitespace_ignored(self):
        self.assertEqual(
            {b'foo': b'bar'},
            parse_tag_value(b'foo=bar; \t'))

    def test_multiple(self):
        self.assertEqual(
            {b'foo': b'bar', b'baz': b'foo'},
            parse_tag_value(b'foo=bar;baz=foo'))

    def test_value_with_equals(self):
        self.assertEqual(
            {b'foo': b'bar', b'baz': b'foo=bar'},
            parse_tag_value(b'foo=bar;baz=foo=bar'))

    def test_whitespace_is_stripped(self):
        self.assertEqual(
            {b'foo': b'bar', b'baz': b'f oo=bar'},
            parse_tag_value(b'   foo  \t= bar;\tbaz=  f oo=bar  '))

    def test_empty_value_allowed(self):
        self.assertEqual(
            {b'p': b''},
            parse_tag_value(b'p='))

    def test_missing_value_is_an_error(self):
        self.assertRaisesRegex(
            InvalidTagSpec, 'baz',
            parse_tag_value, b'foo=bar;baz')

    def test_missing_name_is_an_error(self):
        self.assertRaises(
            InvalidTagSpec,
            parse_tag_value, b'foo=bar; =baz')

    def test_duplicate_tag_is_an_error(self):
        self.assertRaisesRegex(
            DuplicateTag, 'foo',
            parse_tag_value, b'foo=bar;foo=baz')


class TestDefaultLogger(unittest.TestCase):

    def test_has_null_handler(self):
        logger = get_default_logger()
        self.assertEqual('dkimlib', logger.name)
        self.assertTrue(
            any(isinstance(x, logging.NullHandler) for x in logger.handlers))

    def test_handler_added_once(self):
        count = len(get_default_logger().handlers)
        self.assertEqual(count, len(get_default_logger().handlers))
