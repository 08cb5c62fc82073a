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
    'DigestTooLargeError',
    'Ed25519PrivateKey',
    'HASH_ALGORITHMS',
    'load_private_key',
    'parse_ed25519_public_key',
    'parse_pem_private_key',
    'parse_private_key',
    'parse_public_key',
    'RSAPrivateKey',
    'RSASSA_PKCS1_v1_5_sign',
    'RSASSA_PKCS1_v1_5_verify',
    'SIGNATURE_ALGORITHMS',
    'UnparsableKeyError',
    ]

import base64
import binascii
import hashlib
import random
import re

import nacl.exceptions
import nacl.signing

from dkimlib.asn1 import (
    ASN1FormatError,
    asn1_build,
    asn1_parse,
    BIT_STRING,
    INTEGER,
    SEQUENCE,
    OBJECT_IDENTIFIER,
    OCTET_STRING,
    NULL,
    )


ASN1_Object = [
    (SEQUENCE, [
        (SEQUENCE, [
            (OBJECT_IDENTIFIER,),
            (NULL,),
        ]),
        (BIT_STRING,),
    ])
]

ASN1_RSAPublicKey = [
    (SEQUENCE, [
        (INTEGER,),
        (INTEGER,),
    ])
]

ASN1_RSAPrivateKey = [
    (SEQUENCE, [
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
    ])
]

# PKCS#8 wrapper around an RSAPrivateKey ("BEGIN PRIVATE KEY").
ASN1_PrivateKeyInfo = [
    (SEQUENCE, [
        (INTEGER,),
        (SEQUENCE, [
            (OBJECT_IDENTIFIER,),
            (NULL,),
        ]),
        (OCTET_STRING,),
    ])
]


# These values come from RFC 3447, section 9.2 Notes, page 43.
HASH_ID_MAP = {
    'sha1': b"\x2b\x0e\x03\x02\x1a",
    'sha256': b"\x60\x86\x48\x01\x65\x03\x04\x02\x01",
    }

HASH_ALGORITHMS = {
    b'sha1': hashlib.sha1,
    b'sha256': hashlib.sha256,
    }

#: a= value -> (key type, hash name)
SIGNATURE_ALGORITHMS = {
    b'rsa-sha1': (b'rsa', b'sha1'),
    b'rsa-sha256': (b'rsa', b'sha256'),
    b'ed25519-sha256': (b'ed25519', b'sha256'),
    }

_system_random = random.SystemRandom()


class DigestTooLargeError(Exception):
    """The digest is too large to fit within the requested length."""
    pass


class UnparsableKeyError(Exception):
    """The data could not be parsed as a key."""
    pass


def parse_public_key(data):
    """Parse an RSA public key.

    @param data: DER-encoded X.509 subjectPublicKeyInfo
        containing an RFC3447 RSAPublicKey, or the bare RSAPublicKey.
    @return: RSA public key
    """
    try:
        # The first byte of the BIT STRING counts unused bits.
        x = asn1_parse(ASN1_Object, data)
        pkd = asn1_parse(ASN1_RSAPublicKey, x[0][1][1:])
    except ASN1FormatError:
        try:
            pkd = asn1_parse(ASN1_RSAPublicKey, data)
        except ASN1FormatError as e:
            raise UnparsableKeyError(str(e))
    pk = {
        'modulus': pkd[0][0],
        'publicExponent': pkd[0][1],
    }
    return pk


def parse_private_key(data):
    """Parse an RSA private key.

    @param data: DER-encoded RFC3447 RSAPrivateKey, optionally wrapped in
        a PKCS#8 PrivateKeyInfo.
    @return: RSA private key
    """
    try:
        pka = asn1_parse(ASN1_RSAPrivateKey, data)
    except ASN1FormatError:
        try:
            info = asn1_parse(ASN1_PrivateKeyInfo, data)
            pka = asn1_parse(ASN1_RSAPrivateKey, info[0][2])
        except ASN1FormatError as e:
            raise UnparsableKeyError(str(e))
    pk = {
        'version': pka[0][0],
        'modulus': pka[0][1],
        'publicExponent': pka[0][2],
        'privateExponent': pka[0][3],
        'prime1': pka[0][4],
        'prime2': pka[0][5],
        'exponent1': pka[0][6],
        'exponent2': pka[0][7],
        'coefficient': pka[0][8],
    }
    return pk


def parse_pem_private_key(data):
    """Parse a PEM RSA private key.

    @param data: RFC3447 RSAPrivateKey in PEM format.
    @return: RSA private key
    """
    m = re.search(b"--\r?\n(.*?)\r?\n--", data, re.DOTALL)
    if m is None:
        raise UnparsableKeyError("Private key not found")
    try:
        pkdata = base64.b64decode(m.group(1))
    except (TypeError, binascii.Error) as e:
        raise UnparsableKeyError(str(e))
    return parse_private_key(pkdata)


def parse_ed25519_public_key(data):
    """Parse the raw 32 octets of an Ed25519 public key (RFC 8463)."""
    try:
        return nacl.signing.VerifyKey(data)
    except (TypeError, ValueError) as e:
        raise UnparsableKeyError(str(e))


def EMSA_PKCS1_v1_5_encode(hash, mlen):
    """Encode a digest with RFC3447 EMSA-PKCS1-v1_5.

    @param hash: hash object to encode
    @param mlen: desired message length
    @return: encoded digest byte string
    """
    dinfo = asn1_build(
        (SEQUENCE, [
            (SEQUENCE, [
                (OBJECT_IDENTIFIER, HASH_ID_MAP[hash.name.lower()]),
                (NULL, None),
            ]),
            (OCTET_STRING, hash.digest()),
        ]))
    if len(dinfo) + 11 > mlen:
        raise DigestTooLargeError()
    return b"\x00\x01" + b"\xff" * (mlen - len(dinfo) - 3) + b"\x00" + dinfo


def str2int(s):
    """Convert a byte string to an integer.

    @param s: byte string representing a positive integer to convert
    @return: converted integer
    """
    r = 0
    for c in bytearray(s):
        r = (r << 8) | c
    return r


def int2str(n, length=-1):
    """Convert an integer to a byte string.

    @param n: positive integer to convert
    @param length: minimum length
    @return: converted bytestring, of at least the minimum length if it was
        specified
    """
    assert n >= 0
    r = bytearray()
    while length < 0 or len(r) < length:
        r.append(n & 0xff)
        n >>= 8
        if length < 0 and n == 0:
            break
    r.reverse()
    assert length < 0 or len(r) == length
    return bytes(r)


def perform_rsa(message, exponent, modulus, mlen):
    """Perform RSA signing or verification.

    @param message: byte string to operate on
    @param exponent: public or private key exponent
    @param modulus: key modulus
    @param mlen: desired output length
    @return: byte string result of the operation
    """
    return int2str(pow(str2int(message), exponent, modulus), mlen)


def perform_blinded_rsa(message, pk, mlen, rng=None):
    """Perform an RSA private key operation with message blinding.

    The message is multiplied by r^e before exponentiation and the
    result by r^-1 afterwards, so the output equals
    L{perform_rsa} with the private exponent whatever r is drawn.

    @param message: byte string to operate on
    @param pk: RSA private key
    @param mlen: desired output length
    @param rng: source of the blinding factor, anything with a
        C{randrange} method (default C{random.SystemRandom()})
    @return: byte string result of the operation
    """
    if rng is None:
        rng = _system_random
    modulus = pk['modulus']
    while True:
        r = rng.randrange(2, modulus)
        try:
            r_inv = pow(r, -1, modulus)
        except ValueError:
            # r shares a factor with the modulus; draw again.
            continue
        break
    blinded = (str2int(message) * pow(r, pk['publicExponent'], modulus)) % modulus
    s = pow(blinded, pk['privateExponent'], modulus)
    return int2str((s * r_inv) % modulus, mlen)


def RSASSA_PKCS1_v1_5_sign(hash, private_key, rng=None):
    """Sign a digest with RFC3447 RSASSA-PKCS1-v1_5.

    @param hash: hash object to sign
    @param private_key: private key data
    @param rng: randomness source for blinding
    @return: signed digest byte string
    """
    modlen = len(int2str(private_key['modulus']))
    encoded_digest = EMSA_PKCS1_v1_5_encode(hash, modlen)
    return perform_blinded_rsa(encoded_digest, private_key, modlen, rng)


def RSASSA_PKCS1_v1_5_verify(hash, signature, public_key):
    """Verify a digest signed with RFC3447 RSASSA-PKCS1-v1_5.

    @param hash: hash object to check
    @param signature: signed digest byte string
    @param public_key: public key data
    @return: True if the signature is valid, False otherwise
    """
    modlen = len(int2str(public_key['modulus']))
    if len(signature) != modlen:
        return False
    if str2int(signature) >= public_key['modulus']:
        return False
    encoded_digest = EMSA_PKCS1_v1_5_encode(hash, modlen)
    signed_digest = perform_rsa(
        signature, public_key['publicExponent'], public_key['modulus'], modlen)
    return encoded_digest == signed_digest


def ed25519_verify(verify_key, hash, signature):
    """Verify an Ed25519 signature over the digest of hash (RFC 8463)."""
    try:
        verify_key.verify(hash.digest(), signature)
    except (nacl.exceptions.BadSignatureError, nacl.exceptions.ValueError):
        # wrong length signatures are rejected before any curve math
        return False
    return True


class RSAPrivateKey(object):
    """Signing handle for an RSA private key."""

    key_type = b'rsa'

    def __init__(self, pk):
        self.pk = pk

    @property
    def keysize(self):
        return len(bin(self.pk['modulus'])) - 2

    def sign(self, hash, rng=None):
        return RSASSA_PKCS1_v1_5_sign(hash, self.pk, rng)


class Ed25519PrivateKey(object):
    """Signing handle for an Ed25519 private key (the 32 octet seed)."""

    key_type = b'ed25519'

    def __init__(self, seed):
        try:
            self._key = nacl.signing.SigningKey(seed)
        except (TypeError, ValueError) as e:
            raise UnparsableKeyError(str(e))

    @property
    def keysize(self):
        return 256

    def public_key(self):
        return bytes(self._key.verify_key)

    def sign(self, hash, rng=None):
        # Ed25519 is deterministic; rng is accepted for interface parity.
        return self._key.sign(hash.digest()).signature


def load_private_key(data):
    """Load a signing handle from key material.

    @param data: a PEM RSA private key, or the base64 encoded Ed25519
        seed as published by common DKIM key tools.
    @return: L{RSAPrivateKey} or L{Ed25519PrivateKey}
    """
    if isinstance(data, str):
        data = data.encode('ascii')
    if b'-----BEGIN' in data:
        return RSAPrivateKey(parse_pem_private_key(data))
    try:
        seed = base64.b64decode(data.strip(), validate=True)
    except (TypeError, binascii.Error) as e:
        raise UnparsableKeyError(str(e))
    if len(seed) != 32:
        raise UnparsableKeyError("Ed25519 seed must be 32 bytes")
    return Ed25519PrivateKey(seed)
