# Copyright (c) 2009-2013, Exa Networks Limited
# Copyright (c) 2009-2013, Thomas Mangin
# Copyright (c) 2015-2020 Cumulus Networks, Inc.
#
# All rights reserved.
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# Redistributions of source code must retain the above copyright notice, this
# list of conditions and the following disclaimer.
#
# Redistributions in binary form must reproduce the above copyright notice,
# this list of conditions and the following disclaimer in the documentation
# and/or other materials provided with the distribution.
#
# The names of the Exa Networks Limited, Cumulus Networks, Inc. nor the names
# of its contributors may be used to endorse or promote products derived from
# this software without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE
# GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION)
# HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT
# LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT
# OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
#
# Netfilter attribute codec --
#

import logging
import struct
from string import printable
from struct import pack, unpack, unpack_from, calcsize

from .exceptions import (
    ConflictingFlagsError,
    InvalidValueError,
    MalformedLengthError,
    NestingTooDeepError,
    WrongWidthError,
)


log = logging.getLogger(__name__)

NETLINK_NETFILTER = 12
NFNETLINK_V0 = 0

# Netlink message types
NLMSG_NOOP    = 0x01
NLMSG_ERROR   = 0x02
NLMSG_DONE    = 0x03
NLMSG_OVERRUN = 0x04

# Netlink message flags
NLM_F_REQUEST = 0x01  # It is query message.
NLM_F_MULTI   = 0x02  # Multipart message, terminated by NLMSG_DONE
NLM_F_ACK     = 0x04  # Reply with ack, with zero or error code
NLM_F_ECHO    = 0x08  # Echo this query

# Modifiers to GET query
NLM_F_ROOT   = 0x100  # specify tree root
NLM_F_MATCH  = 0x200  # return all matching
NLM_F_DUMP   = NLM_F_ROOT | NLM_F_MATCH
NLM_F_ATOMIC = 0x400  # atomic GET

# Modifiers to NEW query
NLM_F_REPLACE = 0x100  # Override existing
NLM_F_EXCL    = 0x200  # Do not touch, if it exists
NLM_F_CREATE  = 0x400  # Create, if it does not exist
NLM_F_APPEND  = 0x800  # Add to end of list

NLA_F_NESTED        = 0x8000
NLA_F_NET_BYTEORDER = 0x4000
NLA_TYPE_MASK       = ~(NLA_F_NESTED | NLA_F_NET_BYTEORDER) & 0xFFFF

NLA_ALIGNTO = 4
NLA_MAX_LEN = 0xFFFF

# Ceiling on attribute nesting accepted by decode_attributes()
MAX_NESTING_DEPTH = 64

# Netfilter subsystems
# /usr/include/linux/netfilter/nfnetlink.h
NFNL_SUBSYS_NONE              = 0
NFNL_SUBSYS_CTNETLINK         = 1
NFNL_SUBSYS_CTNETLINK_EXP     = 2
NFNL_SUBSYS_QUEUE             = 3
NFNL_SUBSYS_ULOG              = 4
NFNL_SUBSYS_OSF               = 5
NFNL_SUBSYS_IPSET             = 6
NFNL_SUBSYS_ACCT              = 7
NFNL_SUBSYS_CTNETLINK_TIMEOUT = 8
NFNL_SUBSYS_CTHELPER          = 9
NFNL_SUBSYS_NFTABLES          = 10
NFNL_SUBSYS_NFT_COMPAT        = 11
NFNL_SUBSYS_COUNT             = 12

subsystem_to_string = {
    NFNL_SUBSYS_NONE              : 'NFNL_SUBSYS_NONE',
    NFNL_SUBSYS_CTNETLINK         : 'NFNL_SUBSYS_CTNETLINK',
    NFNL_SUBSYS_CTNETLINK_EXP     : 'NFNL_SUBSYS_CTNETLINK_EXP',
    NFNL_SUBSYS_QUEUE             : 'NFNL_SUBSYS_QUEUE',
    NFNL_SUBSYS_ULOG              : 'NFNL_SUBSYS_ULOG',
    NFNL_SUBSYS_OSF               : 'NFNL_SUBSYS_OSF',
    NFNL_SUBSYS_IPSET             : 'NFNL_SUBSYS_IPSET',
    NFNL_SUBSYS_ACCT              : 'NFNL_SUBSYS_ACCT',
    NFNL_SUBSYS_CTNETLINK_TIMEOUT : 'NFNL_SUBSYS_CTNETLINK_TIMEOUT',
    NFNL_SUBSYS_CTHELPER          : 'NFNL_SUBSYS_CTHELPER',
    NFNL_SUBSYS_NFTABLES          : 'NFNL_SUBSYS_NFTABLES',
    NFNL_SUBSYS_NFT_COMPAT        : 'NFNL_SUBSYS_NFT_COMPAT',
    NFNL_SUBSYS_COUNT             : 'NFNL_SUBSYS_COUNT',
}

# Protocol families carried in the nfgenmsg header
# /usr/include/linux/netfilter.h
NFPROTO_UNSPEC = 0
NFPROTO_INET   = 1
NFPROTO_IPV4   = 2
NFPROTO_ARP    = 3
NFPROTO_NETDEV = 5
NFPROTO_BRIDGE = 7
NFPROTO_IPV6   = 10
NFPROTO_DECNET = 12

family_to_string = {
    NFPROTO_UNSPEC : 'unspec',
    NFPROTO_INET   : 'inet',
    NFPROTO_IPV4   : 'ipv4',
    NFPROTO_ARP    : 'arp',
    NFPROTO_NETDEV : 'netdev',
    NFPROTO_BRIDGE : 'bridge',
    NFPROTO_IPV6   : 'ipv6',
    NFPROTO_DECNET : 'decnet',
}

# Multicast groups
# /usr/include/linux/netfilter/nfnetlink_compat.h, enum nfnetlink_groups
NFNLGRP_NONE                = 0
NFNLGRP_CONNTRACK_NEW       = 1
NFNLGRP_CONNTRACK_UPDATE    = 2
NFNLGRP_CONNTRACK_DESTROY   = 3
NFNLGRP_CONNTRACK_EXP_NEW     = 4
NFNLGRP_CONNTRACK_EXP_UPDATE  = 5
NFNLGRP_CONNTRACK_EXP_DESTROY = 6
NFNLGRP_NFTABLES            = 7
NFNLGRP_ACCT_QUOTA          = 8
NFNLGRP_NFTRACE             = 9

GROUPS_CT = [NFNLGRP_CONNTRACK_NEW, NFNLGRP_CONNTRACK_UPDATE, NFNLGRP_CONNTRACK_DESTROY]
GROUPS_CT_EXP = [NFNLGRP_CONNTRACK_EXP_NEW, NFNLGRP_CONNTRACK_EXP_UPDATE, NFNLGRP_CONNTRACK_EXP_DESTROY]

# Colors for logging
red    = 91
green  = 92
yellow = 93
blue   = 94


def set_log_level(level):
    log.setLevel(level)


def get_subsystem_str(subsystem_id):
    return subsystem_to_string.get(subsystem_id, 'NFNL_SUBSYS_%d' % subsystem_id)


def get_family_str(family):
    return family_to_string.get(family, 'UNKNOWN')


def zfilled_hex(value, digits):
    return '0x' + hex(value)[2:].zfill(digits)


def remove_trailing_null(line):
    """
    Remove the last character if it is a NULL...having that NULL
    causes python to print a garbage character
    """
    if line and line[-1] == 0:
        line = line[:-1]

    return line


def data_to_color_text(line_number, color, data, extra=''):
    (c1, c2, c3, c4) = unpack('BBBB', data[0:4].ljust(4, b'\0'))
    in_ascii = []

    for c in (c1, c2, c3, c4):
        char_c = chr(c)

        if char_c in printable[:-5]:
            in_ascii.append(char_c)
        else:
            in_ascii.append('.')

    if color:
        return '  %2d: \033[%dm0x%02x%02x%02x%02x\033[0m  %s  %s' % (line_number, color, c1, c2, c3, c4, ''.join(in_ascii), extra)

    return '  %2d: 0x%02x%02x%02x%02x  %s  %s' % (line_number, c1, c2, c3, c4, ''.join(in_ascii), extra)


def padded_length(length):
    return int((length + NLA_ALIGNTO - 1) // NLA_ALIGNTO) * NLA_ALIGNTO


class Attribute(object):
    """
    One netlink attribute (TLV record) as used by the Netfilter subsystems.

    0                   1                   2                   3
    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |            Length            |N|B|         Type             |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                  Payload, padded to 4 bytes                 |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

    N (NLA_F_NESTED) means the payload is itself a list of attributes,
    B (NLA_F_NET_BYTEORDER) means the payload is in network byte order.
    The two flags are mutually exclusive.

    A nested attribute keeps its content in 'children' and has an empty
    'payload'. 'length' is an optional wire length override, when None or 0
    the length is computed from the payload at encode time.
    """

    HEADER_PACK = '=HH'
    HEADER_LEN = calcsize(HEADER_PACK)

    def __init__(self, type_id=0, payload=b'', children=None, nested=False, net_byte_order=False, length=None):
        self.type_id = type_id
        self.nested = nested
        self.net_byte_order = net_byte_order

        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise InvalidValueError('attribute %d: payload must be bytes, not %s' % (type_id, type(payload).__name__))

        self.payload = bytes(payload)
        self.children = list(children) if children else []
        self.length = length

    @classmethod
    def scalar(cls, type_id, payload, net_byte_order=False, length=None):
        return cls(type_id, payload=payload, net_byte_order=net_byte_order, length=length)

    @classmethod
    def nest(cls, type_id, children, length=None):
        return cls(type_id, children=children, nested=True, length=length)

    @classmethod
    def _from_pack(cls, type_id, fmt, value, net_byte_order):
        try:
            return cls(type_id, payload=pack(fmt, value), net_byte_order=net_byte_order)
        except struct.error as e:
            raise InvalidValueError("attribute %d: value %r does not fit '%s': %s" % (type_id, value, fmt, e))

    @classmethod
    def from_uint8(cls, type_id, value, net_byte_order=False):
        return cls._from_pack(type_id, '!B', value, net_byte_order)

    @classmethod
    def from_uint16(cls, type_id, value, net_byte_order=False):
        return cls._from_pack(type_id, '!H', value, net_byte_order)

    @classmethod
    def from_uint32(cls, type_id, value, net_byte_order=False):
        return cls._from_pack(type_id, '!L', value, net_byte_order)

    @classmethod
    def from_uint64(cls, type_id, value, net_byte_order=False):
        return cls._from_pack(type_id, '!Q', value, net_byte_order)

    @classmethod
    def from_string(cls, type_id, value):
        """
        Strings are NUL terminated on the wire, as the kernel expects them
        """
        return cls(type_id, payload=value.encode('utf-8') + b'\0')

    def __eq__(self, other):
        if not isinstance(other, Attribute):
            return NotImplemented

        return (self.type_id == other.type_id and
                self.nested == other.nested and
                self.net_byte_order == other.net_byte_order and
                self.payload == other.payload and
                self.children == other.children)

    __hash__ = None

    def __str__(self):
        if self.nested:
            return '<Length %d, Type %d, Nested true, %d Children (%s)>' % (
                self.get_length(), self.type_id, len(self.children),
                '[%s]' % ' '.join(str(child) for child in self.children))

        return '<Length %d, Type %d, Nested false, NetByteOrder %s, [%s]>' % (
            self.get_length(), self.type_id, 'true' if self.net_byte_order else 'false',
            ' '.join(str(c) for c in self.payload))

    __repr__ = __str__

    def get_length(self):
        """
        Length the record header carries on the wire (padding excluded)
        """
        if self.length:
            return self.length

        if self.nested:
            return self.HEADER_LEN + sum(padded_length(child.get_length()) for child in self.children)

        return self.HEADER_LEN + len(self.payload)

    # =========================================
    # Scalar accessors, integers are big-endian
    # =========================================
    def _unpack_scalar(self, fmt, name):
        if self.nested:
            raise WrongWidthError('%s: unexpected nested attribute' % name)

        if len(self.payload) != calcsize(fmt):
            raise WrongWidthError('%s: unexpected byte slice length: %d' % (name, len(self.payload)))

        return unpack(fmt, self.payload)[0]

    def uint8(self):
        return self._unpack_scalar('!B', 'uint8')

    def uint16(self):
        return self._unpack_scalar('!H', 'uint16')

    def uint32(self):
        return self._unpack_scalar('!L', 'uint32')

    def uint64(self):
        return self._unpack_scalar('!Q', 'uint64')

    def int8(self):
        return self._unpack_scalar('!b', 'int8')

    def int16(self):
        return self._unpack_scalar('!h', 'int16')

    def int32(self):
        return self._unpack_scalar('!l', 'int32')

    def int64(self):
        return self._unpack_scalar('!q', 'int64')

    def string(self):
        if self.nested:
            raise WrongWidthError('string: unexpected nested attribute')
        return remove_trailing_null(self.payload).decode('utf-8')

    # =========================================
    # Wire encoding
    # =========================================
    def encode(self):
        if self.nested and self.net_byte_order:
            raise ConflictingFlagsError()

        if self.nested:
            return encode_record(self.type_id, NLA_F_NESTED, encode_attributes(self.children), self.length)

        if self.net_byte_order:
            return encode_record(self.type_id, NLA_F_NET_BYTEORDER, self.payload, self.length)

        return encode_record(self.type_id, 0, self.payload, self.length)

    # =========================================
    # Debug output
    # =========================================
    def dump_first_line(self, raw, dump_buffer, line_number, color):
        """
        Add the "Length....Type..." line to the dump buffer
        """
        (length, atype) = unpack(self.HEADER_PACK, raw[:self.HEADER_LEN])
        attr_end = padded_length(length)

        if attr_end == length:
            padded_to = ', '
        else:
            padded_to = ' padded to %d, ' % attr_end

        extra = 'Length %s (%d)%sType %s%s%s (%d)' % \
                (zfilled_hex(length, 4), length,
                 padded_to,
                 zfilled_hex(atype, 4),
                 " (NLA_F_NESTED set)" if self.nested else "",
                 " (NLA_F_NET_BYTEORDER set)" if self.net_byte_order else "",
                 self.type_id)

        dump_buffer.append(data_to_color_text(line_number, color, raw[0:4], extra))
        return line_number + 1

    def dump_lines(self, dump_buffer, line_number, color):
        raw = self.encode()
        line_number = self.dump_first_line(raw, dump_buffer, line_number, color)

        if self.nested:
            for child in self.children:
                line_number = child.dump_lines(dump_buffer, line_number, color)
        else:
            for start in range(self.HEADER_LEN, len(raw), 4):
                dump_buffer.append(data_to_color_text(line_number, color, raw[start:start + 4]))
                line_number += 1

        return line_number


def encode_record(type_id, flags, payload, length=None):
    """
    Build one attribute record: header, payload and the padding up to the
    next 4-byte boundary. length overrides the computed record length,
    it may cover trailing bytes that are not part of payload but can not
    be shorter than it. A length of None or 0 is computed.
    """
    if type_id < 0 or type_id & ~NLA_TYPE_MASK:
        raise InvalidValueError("attribute type %d does not fit in %d bits" % (type_id, NLA_TYPE_MASK.bit_length()))

    if not length:
        length = Attribute.HEADER_LEN + len(payload)

    elif length < Attribute.HEADER_LEN + len(payload):
        raise MalformedLengthError()

    if length > NLA_MAX_LEN:
        raise MalformedLengthError()

    raw = pack(Attribute.HEADER_PACK, length, type_id | flags) + payload
    return raw + b"\0" * (padded_length(length) - len(raw))


def decode_attributes(data, max_depth=MAX_NESTING_DEPTH):
    """
    Decode a buffer of consecutive attribute records into a list of
    Attribute, recursing into nested attributes.

    Raises MalformedLengthError, ConflictingFlagsError or NestingTooDeepError,
    no partial result is ever returned.
    """
    return _decode_attributes(bytes(data), 0, max_depth)


def _decode_attributes(data, depth, max_depth):
    attrs = []
    header_len = Attribute.HEADER_LEN
    data_len = len(data)
    offset = 0

    while offset < data_len:
        remaining = data_len - offset

        if remaining < header_len:
            raise MalformedLengthError()

        (length, attr_type) = unpack_from(Attribute.HEADER_PACK, data, offset)

        # A zero length would keep us in this loop forever
        if length < header_len or length > remaining:
            raise MalformedLengthError()

        nested = True if attr_type & NLA_F_NESTED else False
        net_byte_order = True if attr_type & NLA_F_NET_BYTEORDER else False

        if nested and net_byte_order:
            raise ConflictingFlagsError()

        type_id = attr_type & NLA_TYPE_MASK
        payload = data[offset + header_len:offset + length]

        if nested:
            if depth >= max_depth:
                raise NestingTooDeepError(max_depth)

            attr = Attribute.nest(type_id, _decode_attributes(payload, depth + 1, max_depth))
        else:
            attr = Attribute.scalar(type_id, payload, net_byte_order=net_byte_order)

        attrs.append(attr)

        # attributes are padded for alignment, the padding of the
        # last record may be missing from the buffer
        offset += min(padded_length(length), remaining)

    return attrs


def encode_attributes(attrs):
    """
    Encode a list of Attribute into consecutive 4-byte aligned records
    """
    return b''.join(attr.encode() for attr in attrs)


class AttributeEncoder(object):
    """
    Build an attribute list incrementally without creating the Attribute
    tree first. Each call registers an encode handler, handlers run in
    registration order when encode() is called and the first one that
    raises aborts the whole encode.

        ae = AttributeEncoder()
        ae.string(CTA_HELP, 'ftp')
        ae.nested(CTA_TUPLE_ORIG, lambda tuple_ae: tuple_ae.uint8(CTA_PROTO_NUM, 6))
        data = ae.encode()
    """

    def __init__(self):
        self.encode_handlers = []

    def __len__(self):
        return len(self.encode_handlers)

    def _add(self, type_id, handler):
        self.encode_handlers.append((type_id, handler))

    def uint8(self, type_id, value, net_byte_order=False):
        self._add(type_id, lambda: Attribute.from_uint8(type_id, value, net_byte_order).encode())

    def uint16(self, type_id, value, net_byte_order=False):
        self._add(type_id, lambda: Attribute.from_uint16(type_id, value, net_byte_order).encode())

    def uint32(self, type_id, value, net_byte_order=False):
        self._add(type_id, lambda: Attribute.from_uint32(type_id, value, net_byte_order).encode())

    def uint64(self, type_id, value, net_byte_order=False):
        self._add(type_id, lambda: Attribute.from_uint64(type_id, value, net_byte_order).encode())

    def string(self, type_id, value):
        self._add(type_id, lambda: Attribute.from_string(type_id, value).encode())

    def bytes(self, type_id, value, net_byte_order=False):
        self._add(type_id, lambda: Attribute.scalar(type_id, value, net_byte_order).encode())

    def do(self, type_id, fn, net_byte_order=False):
        """
        fn() is called at encode time and must return the payload bytes
        """
        self._add(type_id, lambda: Attribute.scalar(type_id, fn(), net_byte_order).encode())

    def nested(self, type_id, fn):
        """
        fn(encoder) is called at encode time with a fresh AttributeEncoder
        to fill with the children of this attribute
        """
        def encode_nested():
            child_encoder = AttributeEncoder()
            fn(child_encoder)
            return encode_record(type_id, NLA_F_NESTED, child_encoder.encode())

        self._add(type_id, encode_nested)

    def encode(self):
        return b''.join(handler() for (type_id, handler) in self.encode_handlers)

