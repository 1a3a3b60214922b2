import errno
import logging
import pytest

from .conftest import FakeTransport, ack, assert_identical_tree

from nfnetlink.exceptions import (
    ConnIsMulticastError,
    InvalidGroupsError,
    NetlinkQueryError,
    TransportError,
)
from nfnetlink.nfheader import Header
from nfnetlink.nfmanager import Connection
from nfnetlink.nfmessage import NetlinkMessage, marshal_netlink
from nfnetlink.nfpacket import (
    GROUPS_CT,
    NFNL_SUBSYS_CTNETLINK,
    NLMSG_DONE,
    NLM_F_ACK,
    NLM_F_DUMP,
    NLM_F_MULTI,
    NLM_F_REQUEST,
    Attribute,
)
from nfnetlink.nlsocket import NETLINK_LISTEN_ALL_NSID, NetlinkSocket


@pytest.fixture
def conn(transport):
    return Connection(transport)


def test_query_returns_replies(conn, transport):
    request = NetlinkMessage(0x0101, NLM_F_REQUEST | NLM_F_ACK, data=bytes(4))
    transport.replies.append([ack()])

    assert conn.query(request) == [ack()]
    assert transport.sent == [request]


def test_query_kernel_error(conn, transport):
    transport.replies.append([ack(code=-errno.ENOENT)])

    with pytest.raises(NetlinkQueryError) as e:
        conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST | NLM_F_ACK, data=bytes(4)))

    assert e.value.code == -errno.ENOENT
    assert e.value.errno == errno.ENOENT


def test_query_passes_every_reply_through(conn, transport):
    replies = [NetlinkMessage(0x0100, data=bytes(4)), NetlinkMessage(0x0100, data=bytes([2, 0, 0, 0]))]
    transport.replies.append(replies)

    assert conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST)) == replies


def test_query_transport_error(conn, transport):
    def execute(msg):
        raise TransportError("send", OSError(errno.ENOBUFS, "No buffer space available"))

    transport.execute = execute

    with pytest.raises(TransportError) as e:
        conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST))

    assert e.value.operation == "send"


def test_query_netfilter(conn, transport):
    entry = Header(family=2, subsystem_id=NFNL_SUBSYS_CTNETLINK, message_type=0, flags=NLM_F_MULTI)
    entry_attrs = [Attribute.nest(1, [Attribute.from_uint8(1, 6)]), Attribute.from_uint32(3, 42)]
    transport.replies.append([
        marshal_netlink(entry, entry_attrs),
        NetlinkMessage(NLMSG_DONE, NLM_F_MULTI, data=bytes(4)),
    ])

    request = Header(family=2, subsystem_id=NFNL_SUBSYS_CTNETLINK, message_type=1,
                     flags=NLM_F_REQUEST | NLM_F_DUMP)
    result = conn.query_netfilter(request, [])

    assert transport.sent[0].msgtype == 0x0101
    assert transport.sent[0].data == bytes([2, 0, 0, 0])
    assert len(result) == 1

    (header, attrs) = result[0]
    assert header == entry
    assert_identical_tree(attrs, entry_attrs)


def test_query_netfilter_ack_only(conn, transport):
    transport.replies.append([ack()])

    assert conn.query_netfilter(Header(flags=NLM_F_REQUEST | NLM_F_ACK), []) == []


def test_join_groups_sets_multicast(conn, transport):
    assert not conn.is_multicast

    conn.join_groups(GROUPS_CT)

    assert transport.joined == GROUPS_CT
    assert conn.is_multicast

    with pytest.raises(ConnIsMulticastError):
        conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST))

    assert transport.sent == []


def test_multicast_survives_leave(conn, transport):
    conn.join_groups([1])
    conn.leave_groups([1])

    assert transport.left == [1]
    assert conn.is_multicast

    with pytest.raises(ConnIsMulticastError) as e:
        conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST))

    assert "can no longer be used for bidirectional traffic" in str(e.value)


def test_join_empty_groups(conn, transport):
    with pytest.raises(InvalidGroupsError):
        conn.join_groups([])

    with pytest.raises(InvalidGroupsError):
        conn.leave_groups([])

    assert not conn.is_multicast


def test_join_groups_partial_failure(conn, transport):
    transport.failing_groups.add(2)

    with pytest.raises(TransportError) as e:
        conn.join_groups([1, 2, 3])

    assert e.value.operation == "join-group"
    assert transport.joined == [1]
    assert not conn.is_multicast


def test_leave_groups_partial_failure(conn, transport):
    conn.join_groups([1, 2])
    transport.failing_groups.add(1)

    with pytest.raises(TransportError):
        conn.leave_groups([1, 2])

    assert transport.left == []


def test_receive(conn, transport):
    event = NetlinkMessage(0x0100, data=bytes(4))
    transport.events.append([event])

    conn.join_groups(GROUPS_CT)

    assert conn.receive() == [event]
    assert conn.receive() == []


def test_receive_unicast(conn, transport):
    event = NetlinkMessage(0x0100, data=bytes(4))
    transport.events.append([event])

    assert conn.receive() == [event]


def test_set_option(conn, transport):
    conn.set_option(NETLINK_LISTEN_ALL_NSID, True)

    assert transport.options == {NETLINK_LISTEN_ALL_NSID: True}


def test_close_and_context_manager(transport):
    with Connection(transport) as conn:
        assert str(conn) == "Connection(unicast)"

    assert transport.closed
    assert conn.transport is None

    # closing twice is harmless
    conn.close()


@pytest.mark.parametrize("operation, call", [
    ("query", lambda conn: conn.query(NetlinkMessage(0x0101, NLM_F_REQUEST))),
    ("query", lambda conn: conn.query_netfilter(Header(flags=NLM_F_REQUEST), [])),
    ("join-group", lambda conn: conn.join_groups([1])),
    ("leave-group", lambda conn: conn.leave_groups([1])),
    ("receive", lambda conn: conn.receive()),
    ("set-option", lambda conn: conn.set_option(NETLINK_LISTEN_ALL_NSID, True)),
])
def test_closed_connection(transport, operation, call):
    conn = Connection(transport)
    conn.close()

    with pytest.raises(TransportError) as e:
        call(conn)

    assert e.value.operation == operation
    assert e.value.error.errno == errno.EBADF
    assert not conn.is_multicast


def test_debug_dump(transport, caplog):
    caplog.set_level(logging.DEBUG)
    conn = Connection(transport, debug=True, use_color=False, log_level="DEBUG")
    transport.replies.append([ack()])

    conn.query(marshal_netlink(Header(subsystem_id=NFNL_SUBSYS_CTNETLINK, message_type=1,
                                      flags=NLM_F_REQUEST | NLM_F_ACK),
                               [Attribute.from_string(1, "ftp")]))

    assert "Netfilter Header" in caplog.text
    assert "Error Number 0" in caplog.text


def test_debug_subsystem(transport):
    conn = Connection(transport)
    conn.debug_subsystem(NFNL_SUBSYS_CTNETLINK, True)

    assert conn.debug_this_packet(NetlinkMessage(0x0101))
    assert not conn.debug_this_packet(NetlinkMessage(0x0601))

    conn.debug_subsystem(NFNL_SUBSYS_CTNETLINK, False)
    assert not conn.debug_this_packet(NetlinkMessage(0x0101))


def test_open(monkeypatch):
    dialed = {}

    def dial(protocol, **kwargs):
        dialed["protocol"] = protocol
        dialed.update(kwargs)
        return FakeTransport()

    monkeypatch.setattr(NetlinkSocket, "dial", staticmethod(dial))

    conn = Connection.open(pid_offset=1)

    assert dialed == {"protocol": 12, "pid_offset": 1}
    assert isinstance(conn.transport, FakeTransport)
    assert not conn.is_multicast


def test_open_failure(monkeypatch):
    def dial(protocol, **kwargs):
        raise TransportError("dial", OSError(errno.EPROTONOSUPPORT, "Protocol not supported"))

    monkeypatch.setattr(NetlinkSocket, "dial", staticmethod(dial))

    with pytest.raises(TransportError) as e:
        Connection.open()

    assert str(e.value) == "netlink dial: [Errno 93] Protocol not supported"
