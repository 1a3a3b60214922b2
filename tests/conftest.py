import sys
import json
import pprint
import pytest
import logging

from deepdiff import DeepDiff

from nfnetlink.exceptions import TransportError
from nfnetlink.nfmessage import NetlinkMessage
from nfnetlink.nfpacket import NLMSG_ERROR

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


def attribute_tree(attrs):
    """
    Plain python view of an attribute list, so deepdiff can tell us
    exactly which child differs
    """
    tree = []

    for attr in attrs:
        node = {
            "type": attr.type_id,
            "nested": attr.nested,
            "net_byte_order": attr.net_byte_order,
        }

        if attr.nested:
            node["children"] = attribute_tree(attr.children)
        else:
            node["payload"] = list(attr.payload)

        tree.append(node)

    return tree


def assert_identical_tree(attrs1, attrs2):
    """
    Compares two attribute lists using deepdiff.

    :param attrs1: First list of Attribute to compare.
    :param attrs2: Second list of Attribute to compare.
    """
    tree1 = attribute_tree(attrs1)
    tree2 = attribute_tree(attrs2)

    if diff := DeepDiff(tree1, tree2):
        try:
            logger.error(f"attribute trees are not identical - deepdiff: {json.dumps(diff, indent=4)}")
        except TypeError:
            logger.error(f"attribute trees are not identical - deepdiff: {pprint.pformat(diff)}")

        assert tree1 == tree2


def ack(seq=0, pid=0, code=0):
    """
    NLMSG_ERROR reply as the kernel builds it, code 0 is an ACK
    """
    return NetlinkMessage(NLMSG_ERROR, 0, seq, pid, code.to_bytes(4, sys.byteorder, signed=True) + b"\0" * 16)


class FakeTransport:
    """
    Scripted stand-in for NetlinkSocket: replies and events are consumed
    in order, failing_groups raise on join/leave
    """

    def __init__(self):
        self.sent = []
        self.replies = []
        self.events = []
        self.joined = []
        self.left = []
        self.options = {}
        self.failing_groups = set()
        self.closed = False

    def send(self, msg):
        self.sent.append(msg)
        return msg

    def execute(self, msg):
        self.send(msg)
        return self.replies.pop(0) if self.replies else []

    def receive(self):
        return self.events.pop(0) if self.events else []

    def join_group(self, group):
        if group in self.failing_groups:
            raise TransportError("join-group", OSError(22, "Invalid argument"))
        self.joined.append(group)

    def leave_group(self, group):
        if group in self.failing_groups:
            raise TransportError("leave-group", OSError(22, "Invalid argument"))
        self.left.append(group)

    def set_option(self, option, enable):
        self.options[option] = enable

    def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()
