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

import asyncio
import unittest

import dkimlib
from dkimlib.asyncsupport import get_txt_async, verify_async
from dkimlib.tests.test_dkim import read_test_data


def run(coro):
    return asyncio.run(coro)


class TestVerifyAsync(unittest.TestCase):

    def setUp(self):
        self.message = read_test_data("test.message")
        self.key = read_test_data("test.private")
        self.record = read_test_data("test.txt")

    def sign(self, selector=b"test"):
        return dkimlib.sign(self.message, selector, b"example.com", self.key)

    async def dnsfunc(self, name, timeout=5):
        await asyncio.sleep(0)
        if name == b'test._domainkey.example.com.':
            return self.record
        return None

    def test_verifies(self):
        res = run(verify_async(self.sign(), dnsfunc=self.dnsfunc))
        self.assertEqual(['pass'], [x.kind for x in res])
        self.assertEqual(b'example.com', res[0].domain)

    def test_altered_body_fails(self):
        res = run(verify_async(self.sign() + b"foo", dnsfunc=self.dnsfunc))
        self.assertEqual('body-hash-mismatch', res[0].kind)

    def test_results_in_header_order(self):
        good = self.sign()
        gone = self.sign(b"gone")
        message = (
            gone[:len(gone) - len(self.message)]
            + good[:len(good) - len(self.message)] + self.message)
        res = run(verify_async(message, dnsfunc=self.dnsfunc))
        self.assertEqual(['key-unavailable', 'pass'], [x.kind for x in res])

    def test_lookup_timeout(self):
        async def dnsfunc(name, timeout=5):
            await asyncio.sleep(10)
            return self.record
        res = run(verify_async(self.sign(), dnsfunc=dnsfunc, timeout=0.01))
        self.assertEqual('key-unavailable', res[0].kind)
        self.assertTrue(res[0].retryable)

    def test_lookup_exception(self):
        async def dnsfunc(name, timeout=5):
            raise OSError("network unreachable")
        res = run(verify_async(self.sign(), dnsfunc=dnsfunc))
        self.assertEqual('key-unavailable', res[0].kind)

    def test_concurrency_bound(self):
        state = {'active': 0, 'peak': 0}

        async def dnsfunc(name, timeout=5):
            state['active'] += 1
            state['peak'] = max(state['peak'], state['active'])
            await asyncio.sleep(0.01)
            state['active'] -= 1
            return self.record

        field = self.sign()
        field = field[:len(field) - len(self.message)]
        message = field * 6 + self.message
        res = run(verify_async(message, dnsfunc=dnsfunc, concurrency=2))
        self.assertEqual(['pass'] * 6, [x.kind for x in res])
        self.assertEqual(2, state['peak'])

    def test_malformed_message_raises(self):
        self.assertRaises(
            dkimlib.MessageFormatError,
            run, verify_async(b" folded\r\n\r\nbody", dnsfunc=self.dnsfunc))


class TestGetTxtAsync(unittest.TestCase):

    def test_badly_encoded_name(self):
        self.assertIsNone(
            run(get_txt_async(b'test._domainkey.example.com\xe9.')))
