#!/usr/bin/env python3
# -*- coding: utf-8 -*-

__version__ = '0.1.0'

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

__license__ = 'GPL-2'
__status__ = 'Development'
__copyright__ = 'Copyright (C) 2015-2020 Cumulus Networks, Inc.'

from .exceptions import (
    ConflictingFlagsError,
    ConnIsMulticastError,
    DecodeError,
    InvalidGroupsError,
    InvalidValueError,
    MalformedAttributeError,
    MalformedLengthError,
    MessageTooShortError,
    NestingTooDeepError,
    NetlinkQueryError,
    NfnetlinkError,
    TransportError,
    WrongWidthError,
)
from .nfheader import Header, HeaderType
from .nfmanager import Connection
from .nfmessage import NetlinkMessage, check_netlink_error, marshal_netlink, unmarshal_netlink
from .nfpacket import (
    MAX_NESTING_DEPTH,
    Attribute,
    AttributeEncoder,
    decode_attributes,
    encode_attributes,
)
from .nlsocket import NetlinkSocket
