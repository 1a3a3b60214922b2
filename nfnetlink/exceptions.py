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
# nfnetlink custom exceptions
#

import os


class NfnetlinkError(Exception):
    pass


class MalformedAttributeError(NfnetlinkError):
    pass


class MalformedLengthError(MalformedAttributeError):

    def __init__(self, message="invalid attribute; length too short or too large"):
        MalformedAttributeError.__init__(self, message)


class ConflictingFlagsError(MalformedAttributeError):

    def __init__(self, message="invalid attribute; type cannot have both nested and net byte order flags"):
        MalformedAttributeError.__init__(self, message)


class NestingTooDeepError(MalformedAttributeError):

    def __init__(self, max_depth):
        MalformedAttributeError.__init__(self, "invalid attribute; nesting deeper than %d levels" % max_depth)
        self.max_depth = max_depth


class WrongWidthError(NfnetlinkError):
    pass


class InvalidValueError(NfnetlinkError, ValueError):
    pass


class MessageTooShortError(NfnetlinkError):

    def __init__(self, message="cannot parse netfilter message because it is too short"):
        NfnetlinkError.__init__(self, message)


class DecodeError(NfnetlinkError):
    """
    Raised by unmarshal_netlink() when the attribute payload does not
    decode. The original codec error is available as __cause__
    """

    def __init__(self, cause):
        NfnetlinkError.__init__(self, "decoding attributes: %s" % cause)
        self.cause = cause


class NetlinkQueryError(NfnetlinkError):
    """
    The kernel answered a query with a non-zero error code
    """

    def __init__(self, code):
        self.code = code
        self.errno = abs(code)

        try:
            # os.strerror might raise ValueError
            strerror = os.strerror(self.errno)

            if strerror:
                error_str = "operation failed with '%s' (%s)" % (strerror, code)
            else:
                error_str = "operation failed with code %s" % code

        except ValueError:
            error_str = "operation failed with code %s" % code

        NfnetlinkError.__init__(self, error_str)


class ConnIsMulticastError(NfnetlinkError):

    def __init__(self):
        NfnetlinkError.__init__(
            self,
            "connection is attached to one or more multicast groups and "
            "can no longer be used for bidirectional traffic"
        )


class InvalidGroupsError(NfnetlinkError):
    pass


class TransportError(NfnetlinkError):
    """
    An OSError raised by the netlink socket, tagged with the operation
    (dial, send, receive, join-group, ...) that failed
    """

    def __init__(self, operation, error):
        NfnetlinkError.__init__(self, "netlink %s: %s" % (operation, error))
        self.operation = operation
        self.error = error
