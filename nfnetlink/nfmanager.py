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
# Netfilter connection --
#

import errno
import logging

from .exceptions import ConnIsMulticastError, InvalidGroupsError, TransportError
from .nfmessage import check_netlink_error, dump, marshal_netlink, unmarshal_netlink
from .nfpacket import NETLINK_NETFILTER, NLMSG_DONE, NLMSG_ERROR, set_log_level, subsystem_to_string
from .nlsocket import NetlinkSocket

log = logging.getLogger(__name__)


class Connection(object):
    """
    A session with the kernel Netfilter subsystems over a netlink transport.

    A Connection starts unicast: query() sends a request and returns the
    correlated replies. Once join_groups() succeeds the connection is
    multicast for the rest of its life and only receive() may be used to
    read events, query() raises ConnIsMulticastError even after the
    groups are left.

    The transport is anything offering send(), receive(), execute(),
    join_group(), leave_group(), set_option() and close(), NetlinkSocket
    is the real one.
    """

    def __init__(self, transport, debug=False, use_color=True, log_level=None):
        self.transport = transport
        self.multicast = False
        self.use_color = use_color

        # debugs
        self.debug = {}
        self.debug_all(debug)

        if log_level:
            log.setLevel(log_level)
            set_log_level(log_level)

    @classmethod
    def open(cls, debug=False, use_color=True, log_level=None, **socket_kwargs):
        """
        Dial a NETLINK_NETFILTER socket and wrap it in a Connection,
        socket_kwargs go to NetlinkSocket (pid_offset, rcvbuf_sz, groups)
        """
        transport = NetlinkSocket.dial(NETLINK_NETFILTER, **socket_kwargs)
        return cls(transport, debug=debug, use_color=use_color, log_level=log_level)

    def __str__(self):
        return 'Connection(%s)' % ('multicast' if self.multicast else 'unicast')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        if self.transport:
            self.transport.close()
            self.transport = None
        log.debug('Connection: closed')

    def _check_open(self, operation):
        if not self.transport:
            raise TransportError(operation, OSError(errno.EBADF, 'connection is closed'))

    @property
    def is_multicast(self):
        return self.multicast

    def _debug_set_clear(self, subsystems, enabled):
        """
        Enable or disable hex dumps for all messages of these subsystems
        """
        for x in subsystems:
            if enabled:
                self.debug[x] = True
            elif x in self.debug:
                del self.debug[x]

    def debug_all(self, enabled):
        self._debug_set_clear(subsystem_to_string.keys(), enabled)

    def debug_subsystem(self, subsystem_id, enabled):
        self._debug_set_clear((subsystem_id,), enabled)

    def debug_this_packet(self, msg):
        return msg.header_type.subsystem_id in self.debug

    def _dump(self, msg, desc):
        if self.debug_this_packet(msg):
            dump(msg, desc='%s %s' % (desc, repr(msg)), use_color=self.use_color, logger=log)

    def query(self, msg):
        """
        Send msg and return the replies correlated to it. A non-zero
        kernel error code in the first reply raises NetlinkQueryError.
        """
        self._check_open('query')

        if self.multicast:
            raise ConnIsMulticastError()

        self._dump(msg, 'TX')
        replies = self.transport.execute(msg)

        for reply in replies:
            self._dump(reply, 'RX')

        check_netlink_error(replies)
        return replies

    def query_netfilter(self, header, attrs):
        """
        Marshal a Netfilter request, query it and unmarshal every reply
        that is not an ACK into a (Header, [Attribute]) tuple
        """
        replies = self.query(marshal_netlink(header, attrs))

        return [
            unmarshal_netlink(reply)
            for reply in replies
            if reply.msgtype not in (NLMSG_ERROR, NLMSG_DONE)
        ]

    def join_groups(self, groups):
        """
        Join every multicast group in order, the connection becomes
        multicast once they are all joined. Groups joined before a failing
        one stay joined.
        """
        self._check_open('join-group')

        groups = list(groups)

        if not groups:
            raise InvalidGroupsError('no multicast group to join')

        for group in groups:
            self.transport.join_group(group)

        self.multicast = True
        log.debug('Connection: joined multicast groups %s' % groups)

    def leave_groups(self, groups):
        """
        Leave every multicast group in order, stop at the first failure.
        The connection stays multicast.
        """
        self._check_open('leave-group')

        groups = list(groups)

        if not groups:
            raise InvalidGroupsError('no multicast group to leave')

        for group in groups:
            self.transport.leave_group(group)

        log.debug('Connection: left multicast groups %s' % groups)

    def receive(self):
        """
        Blocking read of the next batch of messages, usable whether or
        not the connection is multicast
        """
        self._check_open('receive')

        msgs = self.transport.receive()

        for msg in msgs:
            self._dump(msg, 'RX')

        return msgs

    def set_option(self, option, enable):
        self._check_open('set-option')
        self.transport.set_option(option, enable)
