from enum import Enum
from functools import total_ordering
from typing import Optional

@total_ordering
class Protocol(Enum):
    def __new__(cls, value, *rest, **kwds):
        obj = object.__new__(cls)
        obj._value_ = value
        return obj
    # Annotate each protocol with its human readable name.
    def __init__(self, _: bytes, display_name: str):
        self.display_name = display_name
    def __repr__(self):
        return self.name
    def __lt__(self, other):
        if self.__class__ != other.__class__:
            return NotImplemented
        return self.value < other.value

    @property
    def code(self) -> int:
        """ Numeric version, as used by OpenSSL (e.g. 0x0303 for TLS 1.2). """
        return int.from_bytes(self.value, byteorder='big')

    @classmethod
    def from_code(cls, code: int) -> Optional['Protocol']:
        try:
            return cls(code.to_bytes(2, byteorder='big'))
        except (ValueError, OverflowError):
            return None

    # Oldest to newest.
    TLS1_0 = b"\x03\x01", 'TLS 1.0'
    TLS1_1 = b"\x03\x02", 'TLS 1.1'
    TLS1_2 = b"\x03\x03", 'TLS 1.2'
    TLS1_3 = b"\x03\x04", 'TLS 1.3'

class CipherSuite(Enum):
    def __repr__(self):
        return self.name
    def __new__(cls, value, *rest, **kwds):
        obj = object.__new__(cls)
        obj._value_ = value
        return obj
    # Annotate each cipher suite with the name OpenSSL knows it by, and whether it's considered secure.
    def __init__(self, _: bytes, openssl_name: str, is_secure: bool):
        self.openssl_name = openssl_name
        self.is_secure = is_secure

    @property
    def code(self) -> int:
        return int.from_bytes(self.value, byteorder='big')

    @classmethod
    def from_openssl_name(cls, openssl_name: Optional[str]) -> Optional['CipherSuite']:
        for cipher_suite in cls:
            if cipher_suite.openssl_name == openssl_name:
                return cipher_suite
        return None

    # Forward secret AEAD and CBC-SHA1 suites.
    TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA = b'\xC0\x09', 'ECDHE-ECDSA-AES128-SHA', True # [RFC8422]
    TLS_ECDHE_ECDSA_WITH_AES_256_CBC_SHA = b'\xC0\x0A', 'ECDHE-ECDSA-AES256-SHA', True # [RFC8422]
    TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA = b'\xC0\x13', 'ECDHE-RSA-AES128-SHA', True # [RFC8422]
    TLS_ECDHE_RSA_WITH_AES_256_CBC_SHA = b'\xC0\x14', 'ECDHE-RSA-AES256-SHA', True # [RFC8422]
    TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256 = b'\xC0\x2B', 'ECDHE-ECDSA-AES128-GCM-SHA256', True # [RFC5289]
    TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384 = b'\xC0\x2C', 'ECDHE-ECDSA-AES256-GCM-SHA384', True # [RFC5289]
    TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256 = b'\xC0\x2F', 'ECDHE-RSA-AES128-GCM-SHA256', True # [RFC5289]
    TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384 = b'\xC0\x30', 'ECDHE-RSA-AES256-GCM-SHA384', True # [RFC5289]
    TLS_ECDHE_RSA_WITH_CHACHA20_POLY1305_SHA256 = b'\xCC\xA8', 'ECDHE-RSA-CHACHA20-POLY1305', True # [RFC7905]
    TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305_SHA256 = b'\xCC\xA9', 'ECDHE-ECDSA-CHACHA20-POLY1305', True # [RFC7905]
    TLS_DHE_RSA_WITH_AES_128_GCM_SHA256 = b'\x00\x9E', 'DHE-RSA-AES128-GCM-SHA256', True # [RFC5288]
    TLS_DHE_RSA_WITH_AES_256_GCM_SHA384 = b'\x00\x9F', 'DHE-RSA-AES256-GCM-SHA384', True # [RFC5288]
    TLS_DHE_RSA_WITH_CHACHA20_POLY1305_SHA256 = b'\xCC\xAA', 'DHE-RSA-CHACHA20-POLY1305', True # [RFC7905]

    # Static RSA key exchange with AES.
    TLS_RSA_WITH_AES_128_CBC_SHA = b'\x00\x2F', 'AES128-SHA', True # [RFC5246]
    TLS_RSA_WITH_AES_256_CBC_SHA = b'\x00\x35', 'AES256-SHA', True # [RFC5246]
    TLS_RSA_WITH_AES_128_GCM_SHA256 = b'\x00\x9C', 'AES128-GCM-SHA256', True # [RFC5288]
    TLS_RSA_WITH_AES_256_GCM_SHA384 = b'\x00\x9D', 'AES256-GCM-SHA384', True # [RFC5288]

    # Legacy suites: RC4, 3DES and CBC with SHA-2 (Lucky13).
    TLS_RSA_WITH_RC4_128_SHA = b'\x00\x05', 'RC4-SHA', False # [RFC5246][RFC6347]
    TLS_RSA_WITH_3DES_EDE_CBC_SHA = b'\x00\x0A', 'DES-CBC3-SHA', False # [RFC5246]
    TLS_RSA_WITH_AES_128_CBC_SHA256 = b'\x00\x3C', 'AES128-SHA256', False # [RFC5246]
    TLS_RSA_WITH_AES_256_CBC_SHA256 = b'\x00\x3D', 'AES256-SHA256', False # [RFC5246]
    TLS_ECDHE_ECDSA_WITH_RC4_128_SHA = b'\xC0\x07', 'ECDHE-ECDSA-RC4-SHA', False # [RFC8422][RFC6347]
    TLS_ECDHE_RSA_WITH_RC4_128_SHA = b'\xC0\x11', 'ECDHE-RSA-RC4-SHA', False # [RFC8422][RFC6347]
    TLS_ECDHE_RSA_WITH_3DES_EDE_CBC_SHA = b'\xC0\x12', 'ECDHE-RSA-DES-CBC3-SHA', False # [RFC8422]
    TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA256 = b'\xC0\x23', 'ECDHE-ECDSA-AES128-SHA256', False # [RFC5289]
    TLS_ECDHE_ECDSA_WITH_AES_256_CBC_SHA384 = b'\xC0\x24', 'ECDHE-ECDSA-AES256-SHA384', False # [RFC5289]
    TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA256 = b'\xC0\x27', 'ECDHE-RSA-AES128-SHA256', False # [RFC5289]
    TLS_ECDHE_RSA_WITH_AES_256_CBC_SHA384 = b'\xC0\x28', 'ECDHE-RSA-AES256-SHA384', False # [RFC5289]
    TLS_DHE_RSA_WITH_3DES_EDE_CBC_SHA = b'\x00\x16', 'DHE-RSA-DES-CBC3-SHA', False # [RFC5246]
    TLS_DHE_RSA_WITH_AES_128_CBC_SHA = b'\x00\x33', 'DHE-RSA-AES128-SHA', False # [RFC5246]
    TLS_DHE_RSA_WITH_AES_256_CBC_SHA = b'\x00\x39', 'DHE-RSA-AES256-SHA', False # [RFC5246]
    TLS_DHE_RSA_WITH_AES_128_CBC_SHA256 = b'\x00\x67', 'DHE-RSA-AES128-SHA256', False # [RFC5246]
    TLS_DHE_RSA_WITH_AES_256_CBC_SHA256 = b'\x00\x6B', 'DHE-RSA-AES256-SHA256', False # [RFC5246]

# Every protocol version that can be probed, oldest to newest.
ALL_PROTOCOLS = tuple(Protocol)

# Secure cipher suites first, then the legacy ones. Insecure suites are included on purpose,
# finding them is the point of the scan.
ALL_CIPHER_SUITES = tuple(cs for cs in CipherSuite if cs.is_secure) + tuple(cs for cs in CipherSuite if not cs.is_secure)
