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
# Netfilter message assembly --
#

import logging
from pprint import pformat
from struct import pack, unpack, unpack_from, calcsize

from .exceptions import (
    DecodeError,
    MalformedAttributeError,
    MessageTooShortError,
    NetlinkQueryError,
)
from .nfheader import Header, HeaderType
from .nfpacket import (
    NLMSG_DONE,
    NLMSG_ERROR,
    NLMSG_NOOP,
    NLMSG_OVERRUN,
    NLM_F_ACK,
    NLM_F_APPEND,
    NLM_F_ATOMIC,
    NLM_F_ECHO,
    NLM_F_MULTI,
    NLM_F_REQUEST,
    NLM_F_ROOT,
    NLM_F_MATCH,
    blue,
    data_to_color_text,
    decode_attributes,
    encode_attributes,
    get_family_str,
    green,
    padded_length,
    red,
    yellow,
    zfilled_hex,
)


log = logging.getLogger(__name__)


class NetlinkMessage(object):
    """
    Netlink Header

    0                   1                   2                   3
    0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                          Length                             |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |            Type              |           Flags              |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                      Sequence Number                        |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                      Process ID (PID)                       |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

    'data' holds everything after those 16 bytes. For Netfilter messages
    that is the 4 byte nfgenmsg header followed by the attributes.
    """

    header_PACK = '=IHHII'
    header_LEN  = calcsize(header_PACK)

    type_to_string = {
        NLMSG_NOOP    : 'NLMSG_NOOP',
        NLMSG_ERROR   : 'NLMSG_ERROR',
        NLMSG_DONE    : 'NLMSG_DONE',
        NLMSG_OVERRUN : 'NLMSG_OVERRUN',
    }

    flag_to_string = {
        NLM_F_REQUEST : 'NLM_F_REQUEST',
        NLM_F_MULTI   : 'NLM_F_MULTI',
        NLM_F_ACK     : 'NLM_F_ACK',
        NLM_F_ECHO    : 'NLM_F_ECHO',
        NLM_F_ROOT    : 'NLM_F_ROOT|NLM_F_REPLACE',
        NLM_F_MATCH   : 'NLM_F_MATCH|NLM_F_EXCL',
        NLM_F_ATOMIC  : 'NLM_F_ATOMIC|NLM_F_CREATE',
        NLM_F_APPEND  : 'NLM_F_APPEND',
    }

    def __init__(self, msgtype=0, flags=0, seq=0, pid=0, data=b''):
        self.msgtype = msgtype
        self.flags   = flags
        self.seq     = seq
        self.pid     = pid
        self.data    = bytes(data)

    @property
    def length(self):
        return self.header_LEN + len(self.data)

    @property
    def header_type(self):
        return HeaderType.from_netlink(self.msgtype)

    def __eq__(self, other):
        if not isinstance(other, NetlinkMessage):
            return NotImplemented

        return (self.msgtype == other.msgtype and
                self.flags == other.flags and
                self.seq == other.seq and
                self.pid == other.pid and
                self.data == other.data)

    __hash__ = None

    def __str__(self):
        return self.get_type_string()

    def __repr__(self):
        return 'NetlinkMessage(%s, flags 0x%x, seq %d, pid %d, %d bytes)' % (
            self.get_type_string(), self.flags, self.seq, self.pid, len(self.data))

    def get_type_string(self):
        if self.msgtype in self.type_to_string:
            return self.type_to_string[self.msgtype]
        return str(self.header_type)

    def get_flags_string(self):
        foo = []

        for (flag, flag_string) in self.flag_to_string.items():
            if self.flags & flag:
                foo.append(flag_string)

        return ', '.join(foo)

    def encode(self):
        header = pack(self.header_PACK, self.length, self.msgtype, self.flags, self.seq, self.pid)
        raw = header + self.data
        return raw + b'\0' * (padded_length(len(raw)) - len(raw))

    @classmethod
    def decode_messages(cls, data):
        """
        Split a buffer received from a netlink socket into NetlinkMessage
        """
        messages = []
        data_len = len(data)
        offset = 0

        while offset < data_len:
            if data_len - offset < cls.header_LEN:
                raise MessageTooShortError('packet too short to contain a netlink message header')

            (length, msgtype, flags, seq, pid) = unpack_from(cls.header_PACK, data, offset)

            if length < cls.header_LEN:
                raise MessageTooShortError('invalid length %d in netlink header' % length)

            if length > data_len - offset:
                raise MessageTooShortError('packet too short to contain a message of %d bytes' % length)

            messages.append(cls(msgtype, flags, seq, pid, data[offset + cls.header_LEN:offset + length]))
            offset += padded_length(length)

        return messages

    def error_code(self):
        """
        The kernel error code (a signed, usually negative, errno) at
        offset 0 of a NLMSG_ERROR payload, 0 means this is an ACK
        """
        if self.msgtype != NLMSG_ERROR:
            return 0

        if len(self.data) < 4:
            raise MessageTooShortError('message too short to contain an error code')

        return unpack('=i', self.data[:4])[0]


def check_netlink_error(msgs):
    """
    Raise NetlinkQueryError if the first message of a reply carries
    a non-zero kernel error code
    """
    if not msgs:
        return

    error_code = msgs[0].error_code()

    if error_code:
        raise NetlinkQueryError(error_code)


def unmarshal_netlink(msg):
    """
    Split a netlink message into its Netfilter header and attributes
    """
    if len(msg.data) < Header.LEN:
        raise MessageTooShortError()

    header = Header.decode(msg.data)
    header.header_type = msg.header_type
    header.flags = msg.flags

    try:
        attrs = decode_attributes(msg.data[Header.LEN:])
    except MalformedAttributeError as e:
        raise DecodeError(e) from e

    return header, attrs


def marshal_netlink(header, attrs):
    """
    Build the netlink message for a Netfilter header and attribute list,
    sequence number and pid are left to the socket
    """
    data = encode_attributes(attrs)
    return NetlinkMessage(header.header_type.to_netlink(), header.flags, data=header.encode() + data)


def dump(msg, desc=None, use_color=True, logger=None):
    """
    Log the message in hex, with the netlink header in red, the netfilter
    header in yellow and attributes alternating green and blue. This is
    only used for debugging.
    """
    logger = logger or log
    dump_buffer = ['']
    line_number = 1

    def colored(title, color):
        if color:
            return '  \033[%dm%s\033[0m' % (color, title)
        return '  %s' % title

    if desc is None:
        desc = '%s, length %d, seq %d, pid %d, flags 0x%x (%s)' % (
            msg, msg.length, msg.seq, msg.pid, msg.flags, msg.get_flags_string())

    raw = msg.encode()
    color = red if use_color else None
    dump_buffer.append(colored('Netlink Header', color))

    header_lines = (
        'Length %s (%d)' % (zfilled_hex(msg.length, 8), msg.length),
        'Type %s (%d - %s), Flags %s (%s)' % (zfilled_hex(msg.msgtype, 4), msg.msgtype, msg,
                                              zfilled_hex(msg.flags, 4), msg.get_flags_string()),
        'Sequence Number %s (%d)' % (zfilled_hex(msg.seq, 8), msg.seq),
        'Process ID %s (%d)' % (zfilled_hex(msg.pid, 8), msg.pid),
    )

    for (x, extra) in enumerate(header_lines):
        dump_buffer.append(data_to_color_text(line_number, color, raw[x * 4:x * 4 + 4], extra))
        line_number += 1

    attrs = []

    if msg.msgtype == NLMSG_ERROR:
        if len(msg.data) >= 4:
            color = yellow if use_color else None
            dump_buffer.append(colored('Error', color))
            dump_buffer.append(data_to_color_text(line_number, color, msg.data[0:4],
                                                  'Error Number %d' % msg.error_code()))
            line_number += 1

    elif msg.msgtype not in (NLMSG_DONE, NLMSG_NOOP, NLMSG_OVERRUN) and len(msg.data) >= Header.LEN:
        header = Header.decode(msg.data)
        color = yellow if use_color else None
        dump_buffer.append(colored('Netfilter Header', color))
        dump_buffer.append(data_to_color_text(
            line_number, color, msg.data[0:Header.LEN],
            'Family %s (%d), Version %d, Resource ID %d' % (
                get_family_str(header.family), header.family, header.version, header.resource_id)))
        line_number += 1

        try:
            attrs = decode_attributes(msg.data[Header.LEN:])
        except MalformedAttributeError as e:
            dump_buffer.append('  Attributes could not be decoded: %s' % e)

        if attrs:
            dump_buffer.append('  Attributes')
            color = green if use_color else None

        for attr in attrs:
            line_number = attr.dump_lines(dump_buffer, line_number, color)

            # Alternate back and forth between green and blue
            if use_color:
                color = blue if color == green else green

    if use_color:
        logger.debug('%s\n%s\n\nAttributes Summary\n%s\n' %
                     (desc, '\n'.join(dump_buffer), pformat(attrs)))
    else:
        # Assume if we are not allowing color output we also don't want embedded
        # newline characters in the output. Output each line individually.
        logger.debug(desc)
        for line in dump_buffer:
            logger.debug(line)
        logger.debug('')
        logger.debug('Attributes Summary')
        for attr in attrs:
            logger.debug(' %s' % attr)
