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

import dns.rdatatype
import dns.resolver

__all__ = [
    'get_txt'
    ]


def get_txt_dnspython(name, timeout=5):
    """Return a TXT record associated with a DNS name."""
    try:
        a = dns.resolver.resolve(
            name, dns.rdatatype.TXT, raise_on_no_answer=False,
            lifetime=timeout)
        for r in a.response.answer:
            if r.rdtype == dns.rdatatype.TXT:
                return b"".join(list(r.items)[0].strings)
    except dns.resolver.NXDOMAIN:
        pass
    return None


def get_txt(name, timeout=5):
    """Return a TXT record associated with a DNS name.

    @param name: The bytestring domain name to look up.
    @param timeout: seconds before dnspython gives up
    @return: the TXT record value, or None when there is none.  Other
    resolver failures (timeouts, SERVFAIL) propagate as dnspython
    exceptions.
    """
    # dnspython wants text, and DKIM's d= is ASCII (already punycoded).
    try:
        unicode_name = name.decode('ascii')
    except UnicodeDecodeError:
        return None
    return get_txt_dnspython(unicode_name, timeout=timeout)
