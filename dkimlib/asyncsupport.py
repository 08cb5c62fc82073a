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
# Copyright (c) 2016, 2017, 2018, 2019 Scott Kitterman <scott@kitterman.com>
#
# This has been modified from the original software.
# Copyright (c) 2017 Valimail Inc
# Contact: Gene Shuman <gene@valimail.com>

import asyncio
import aiodns
import dkimlib

__all__ = [
    'get_txt_async',
    'verify_async'
    ]

#: Default number of key lookups in flight at once per message.
CONCURRENCY = 4


async def get_txt_async(name, timeout=5):
    """Return a TXT record associated with a DNS name in an async loop. For
    DKIM we can assume there is only one."""
    if isinstance(name, bytes):
        try:
            name = name.decode('ascii')
        except UnicodeDecodeError:
            return None
    resolver = aiodns.DNSResolver(timeout=timeout)
    try:
        result = await resolver.query(name, 'TXT')
    except aiodns.error.DNSError:
        result = None

    if result:
        text = result[0].text
        if isinstance(text, str):
            text = text.encode('ascii')
        return text
    else:
        return None


class DKIM(dkimlib.DKIM):
  """DKIM verifier whose key lookups run as asyncio tasks.

  The checks that need no key are the same as L{dkimlib.DKIM}; only the
  lookup is awaited, bounded by a semaphore and by the instance timeout.
  """

  #: Verify one DKIM signature, awaiting the key lookup.
  #: @param sig_header: (header_name, header_value)
  #: @param dnsfunc: coroutine function to lookup TXT records
  #: @param semaphore: limits concurrent lookups
  #: @param now: current time, default time.time()
  #: @return: L{dkimlib.VerificationResult}
  async def verify_sig(self, sig_header, dnsfunc, semaphore, now=None):
    result = dkimlib.VerificationResult(header=sig_header)
    try:
        sig, ktype, h = self.prepare_signature(sig_header, result, now)
        name = self.key_name(sig)
        async with semaphore:
            try:
                s = await asyncio.wait_for(
                    dnsfunc(name, timeout=self.timeout), self.timeout)
            except asyncio.TimeoutError:
                raise self.lookup_failed(name, "timed out")
            except Exception as e:
                raise self.lookup_failed(name, e)
        self.verify_key(sig, ktype, h, name, s)
    except dkimlib.DKIMException as e:
        self.record_failure(result, e)
    return result

  async def verify(self, dnsfunc=get_txt_async, now=None,
        concurrency=CONCURRENCY):
    semaphore = asyncio.Semaphore(concurrency)
    return list(await asyncio.gather(*[
        self.verify_sig(x, dnsfunc, semaphore, now)
        for x in self.signature_headers()]))


async def verify_async(message, logger=None, dnsfunc=None, minkey=1024,
        timeout=5, concurrency=CONCURRENCY, now=None):
    """Verify every DKIM signature on an RFC822 formatted message in an asyncio context.
    @param message: an RFC822 formatted message (with either \\n or \\r\\n line endings)
    @param logger: a logger to which debug info will be written (default None)
    @param dnsfunc: coroutine function to lookup TXT records (default aiodns)
    @param minkey: the minimum RSA key size to accept
    @param timeout: number of seconds for each key lookup (default = 5)
    @param concurrency: maximum key lookups in flight at once (default = 4)
    @param now: current time for t= and x= checks (default time.time())
    @return: list of L{dkimlib.VerificationResult} in header order
    @raise dkimlib.MessageFormatError: if the message cannot be parsed
    """
    if not dnsfunc:
        dnsfunc=get_txt_async
    d = DKIM(message,logger=logger,minkey=minkey,timeout=timeout)
    return await d.verify(dnsfunc=dnsfunc, now=now, concurrency=concurrency)
