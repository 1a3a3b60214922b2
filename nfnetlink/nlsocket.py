#!/usr/bin/env python3
#
# Copyright (C) 2015-2020 Cumulus Networks, Inc. all rights reserved
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License as
# published by the Free Software Foundation; version 2.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU
# General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA
# 02110-1301, USA.
#
# https://www.gnu.org/licenses/gpl-2.0-standalone.html
#
# Netlink socket --
#
# The transport under the Netfilter connection: an AF_NETLINK socket
# that sends NetlinkMessage, collects the replies matching a request and
# manages multicast group membership.
#

import errno
import logging
import os
import socket

from .exceptions import TransportError
from .nfmessage import NetlinkMessage
from .nfpacket import NETLINK_NETFILTER, NLMSG_DONE, NLMSG_ERROR, NLM_F_ACK, NLM_F_MULTI

log = logging.getLogger(__name__)

# As defined in linux/socket.h and linux/netlink.h
SOL_NETLINK = getattr(socket, 'SOL_NETLINK', 270)

NETLINK_ADD_MEMBERSHIP  = 1
NETLINK_DROP_MEMBERSHIP = 2
NETLINK_PKTINFO         = 3
NETLINK_BROADCAST_ERROR = 4
NETLINK_NO_ENOBUFS      = 5
NETLINK_LISTEN_ALL_NSID = 8
NETLINK_CAP_ACK         = 10
NETLINK_EXT_ACK         = 11


class Sequence(object):

    def __init__(self):
        self._next = 0

    def __next__(self):
        self._next += 1
        return self._next


class NetlinkSocket(object):

    RECV_BUFFER = 65536

    def __init__(self, protocol=NETLINK_NETFILTER, pid_offset=0, rcvbuf_sz=None, groups=0):
        # PID_MAX_LIMIT is 2^22 allowing 1024 sockets per-pid. We default to 0
        # in the upper space (top 10 bits), which will simply be the PID. Other
        # sockets in the same process can choose other offsets to avoid
        # conflicts with each other.
        self.protocol = protocol
        self.pid = os.getpid() | (pid_offset << 22)
        self.sequence = Sequence()
        self.rcvbuf_sz = rcvbuf_sz
        self.groups = groups
        self.recv_buffer = int(os.getenv('NFNETLINK_RECV_BUFFER', self.RECV_BUFFER))
        self.sock = None

    def __str__(self):
        return 'NetlinkSocket'

    @classmethod
    def dial(cls, protocol=NETLINK_NETFILTER, **kwargs):
        nlsock = cls(protocol, **kwargs)
        nlsock.open()
        return nlsock

    def open(self):
        if self.sock:
            return

        try:
            self.sock = socket.socket(socket.AF_NETLINK, socket.SOCK_RAW, self.protocol)

            if self.rcvbuf_sz:
                self._set_rcvbuf(self.rcvbuf_sz)

            self._bind()
        except OSError as e:
            if self.sock:
                self.sock.close()
                self.sock = None
            raise TransportError('dial', e) from e

    def _set_rcvbuf(self, rcvbuf_sz):
        # SO_RCVBUFFORCE needs CAP_NET_ADMIN, fall back to SO_RCVBUF
        try:
            self.sock.setsockopt(
                socket.SOL_SOCKET,
                socket.SO_RCVBUFFORCE if hasattr(socket, 'SO_RCVBUFFORCE') else 33,
                rcvbuf_sz
            )
        except OSError as e:
            log.debug('nlsocket: setsockopt SO_RCVBUFFORCE: %s' % str(e))
            self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, rcvbuf_sz)

    def _bind(self):
        """
        bind retry mechanism: another socket may already be bound to our
        pid, in that case we retry up to NFNETLINK_BIND_RETRY times (defaults
        to 4242), increasing the pid we bind to every time.
        """
        for i in range(0, int(os.getenv('NFNETLINK_BIND_RETRY', 4242))):
            try:
                self.sock.bind((self.pid + i, self.groups))
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise
                continue

            if i != 0:
                log.debug('nlsocket: pid %s already in use - binding netlink socket to pid %s'
                          % (self.pid, self.pid + i))
            self.pid = self.pid + i
            return

        # all our bind calls failed, try one last time on the original
        # pid and let the exception go up this time
        self.sock.bind((self.pid, self.groups))

    def _check_open(self, operation):
        if not self.sock:
            raise TransportError(operation, OSError(errno.EBADF, 'socket is closed'))

    def close(self):
        if not self.sock:
            return

        try:
            self.sock.close()
        except OSError as e:
            raise TransportError('close', e) from e
        finally:
            self.sock = None

    def send(self, msg):
        """
        TX a message but do NOT wait for a reply. A zero sequence number
        or pid is filled in, the message as sent is returned.
        """
        self._check_open('send')

        sent = NetlinkMessage(
            msg.msgtype,
            msg.flags,
            msg.seq or next(self.sequence),
            msg.pid or self.pid,
            msg.data
        )

        try:
            self.sock.sendall(sent.encode())
        except OSError as e:
            raise TransportError('send', e) from e

        log.debug('TXed %12s, pid %d, seq %d, %d bytes' % (sent, sent.pid, sent.seq, sent.length))
        return sent

    def receive(self):
        """
        Blocking read, returns every netlink message of one datagram
        """
        self._check_open('receive')

        try:
            data = self.sock.recv(self.recv_buffer)
        except OSError as e:
            raise TransportError('receive', e) from e

        if not data:
            log.info('RXed zero length data, the socket is closed')
            return []

        return NetlinkMessage.decode_messages(data)

    def execute(self, msg):
        """
        TX a message and collect the replies carrying its sequence number
        and pid. Collection stops on NLMSG_DONE, on NLMSG_ERROR (ACK or
        error, it is part of the result) or after the first reply of a
        non multipart answer when no ACK was requested.
        """
        sent = self.send(msg)
        msgs = []

        while True:
            replies = self.receive()

            if not replies:
                return msgs

            for reply in replies:
                debug_str = 'RXed %12s, pid %d, seq %d, %d bytes' % (reply, reply.pid, reply.seq, reply.length)

                # This shouldn't happen but it would be nice to be aware of it if it does
                if reply.pid != sent.pid:
                    log.debug(debug_str + '...we are not interested in this pid %s since ours is %s' %
                              (reply.pid, sent.pid))
                    continue

                if reply.seq != sent.seq:
                    log.debug(debug_str + '...we are not interested in this seq %s since ours is %s' %
                              (reply.seq, sent.seq))
                    continue

                if reply.msgtype == NLMSG_DONE:
                    log.debug(debug_str + '...end of multipart message')
                    return msgs

                log.debug(debug_str)
                msgs.append(reply)

                if reply.msgtype == NLMSG_ERROR:
                    return msgs

                if not reply.flags & NLM_F_MULTI and not sent.flags & NLM_F_ACK:
                    return msgs

    def _setsockopt(self, operation, optname, value):
        self._check_open(operation)

        try:
            self.sock.setsockopt(SOL_NETLINK, optname, value)
        except OSError as e:
            raise TransportError(operation, e) from e

    def join_group(self, group):
        self._setsockopt('join-group', NETLINK_ADD_MEMBERSHIP, group)
        log.debug('nlsocket: joined multicast group %d' % group)

    def leave_group(self, group):
        self._setsockopt('leave-group', NETLINK_DROP_MEMBERSHIP, group)
        log.debug('nlsocket: left multicast group %d' % group)

    def set_option(self, option, enable):
        self._setsockopt('set-option', option, 1 if enable else 0)
