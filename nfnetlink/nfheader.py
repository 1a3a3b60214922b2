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
# Netfilter header codec --
#

import logging
import struct
from struct import pack, unpack_from, calcsize

from .exceptions import InvalidValueError, MessageTooShortError
from .nfpacket import (
    NFNETLINK_V0,
    NFNL_SUBSYS_NONE,
    NFPROTO_UNSPEC,
    get_family_str,
    get_subsystem_str,
)


log = logging.getLogger(__name__)


class HeaderType(object):
    """
    Netfilter splits the 16 bit netlink message type in two bytes: the most
    significant byte is the subsystem ID, the least significant one is the
    message type. The meaning of the message type depends on the subsystem.
    """

    def __init__(self, subsystem_id=NFNL_SUBSYS_NONE, message_type=0):
        self.subsystem_id = subsystem_id
        self.message_type = message_type

    @classmethod
    def from_netlink(cls, nlmsg_type):
        return cls((nlmsg_type & 0xff00) >> 8, nlmsg_type & 0x00ff)

    def to_netlink(self):
        for (name, value) in (('subsystem_id', self.subsystem_id), ('message_type', self.message_type)):
            if not 0 <= value <= 0xff:
                raise InvalidValueError('%s %r does not fit in one byte' % (name, value))

        return (self.subsystem_id << 8) | self.message_type

    def __eq__(self, other):
        if not isinstance(other, HeaderType):
            return NotImplemented
        return (self.subsystem_id, self.message_type) == (other.subsystem_id, other.message_type)

    __hash__ = None

    def __str__(self):
        return '%s|%d' % (get_subsystem_str(self.subsystem_id), self.message_type)

    def __repr__(self):
        return 'HeaderType(%s)' % self


class Header(object):
    """
    Netfilter header, struct nfgenmsg in linux/netfilter/nfnetlink.h

    0                   1                   2                   3
    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |    Family     |    Version    |     Resource ID (big endian)  |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

    subsystem_id, message_type and flags are not part of those 4 bytes,
    they travel in the netlink header of the message and are carried here
    so a (Header, attributes) pair describes a whole message.
    """

    PACK = '!BBH'
    LEN = calcsize(PACK)

    def __init__(self, family=NFPROTO_UNSPEC, version=NFNETLINK_V0, resource_id=0,
                 subsystem_id=NFNL_SUBSYS_NONE, message_type=0, flags=0):
        self.family = family
        self.version = version
        self.resource_id = resource_id
        self.subsystem_id = subsystem_id
        self.message_type = message_type
        self.flags = flags

    @classmethod
    def decode(cls, data):
        if len(data) < cls.LEN:
            raise MessageTooShortError()

        (family, version, resource_id) = unpack_from(cls.PACK, data)
        return cls(family, version, resource_id)

    def encode(self):
        try:
            return pack(self.PACK, self.family, self.version, self.resource_id)
        except struct.error as e:
            raise InvalidValueError('invalid netfilter header %s: %s' % (self, e))

    @property
    def header_type(self):
        return HeaderType(self.subsystem_id, self.message_type)

    @header_type.setter
    def header_type(self, header_type):
        self.subsystem_id = header_type.subsystem_id
        self.message_type = header_type.message_type

    def __eq__(self, other):
        if not isinstance(other, Header):
            return NotImplemented

        return (self.family == other.family and
                self.version == other.version and
                self.resource_id == other.resource_id and
                self.subsystem_id == other.subsystem_id and
                self.message_type == other.message_type and
                self.flags == other.flags)

    __hash__ = None

    def __str__(self):
        return '<Family %s (%d), Version %d, ResourceID %d, Type %s, Flags 0x%x>' % (
            get_family_str(self.family), self.family, self.version, self.resource_id,
            self.header_type, self.flags)

    __repr__ = __str__
