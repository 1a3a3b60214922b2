import pytest

from nfnetlink.exceptions import InvalidValueError, MessageTooShortError
from nfnetlink.nfheader import Header, HeaderType
from nfnetlink.nfpacket import (
    NFNETLINK_V0,
    NFNL_SUBSYS_CTNETLINK,
    NFNL_SUBSYS_CTNETLINK_TIMEOUT,
    NFPROTO_BRIDGE,
    NFPROTO_IPV4,
)


def test_header_decode():
    header = Header.decode(bytes([255, 1, 0, 2]))

    assert (header.family, header.version, header.resource_id) == (255, 1, 2)


def test_header_encode():
    assert Header(family=255, version=1, resource_id=2).encode() == bytes([255, 1, 0, 2])


def test_header_resource_id_is_big_endian():
    assert Header(resource_id=0x0102).encode() == bytes([0, 0, 1, 2])
    assert Header.decode(bytes([0, 0, 0xAB, 0xCD])).resource_id == 0xABCD


def test_header_decode_ignores_trailing_bytes():
    assert Header.decode(bytes([2, 0, 0, 0, 8, 0, 1, 0])) == Header(family=NFPROTO_IPV4)


def test_header_decode_too_short():
    with pytest.raises(MessageTooShortError) as e:
        Header.decode(bytes([1, 2, 3]))

    assert str(e.value) == "cannot parse netfilter message because it is too short"


def test_header_encode_out_of_range():
    with pytest.raises(InvalidValueError):
        Header(family=256).encode()

    with pytest.raises(InvalidValueError):
        Header(resource_id=0x10000).encode()


def test_header_defaults():
    header = Header()

    assert header.version == NFNETLINK_V0
    assert header.encode() == bytes(4)
    assert header.header_type == HeaderType(0, 0)


def test_header_type_property():
    header = Header(family=NFPROTO_BRIDGE)
    header.header_type = HeaderType(NFNL_SUBSYS_CTNETLINK, 2)

    assert (header.subsystem_id, header.message_type) == (NFNL_SUBSYS_CTNETLINK, 2)
    assert header.header_type == HeaderType(NFNL_SUBSYS_CTNETLINK, 2)


def test_header_equality_covers_type_and_flags():
    assert Header(flags=1) != Header(flags=2)
    assert Header(message_type=1) != Header(message_type=2)
    assert Header(family=7, flags=0x100) == Header(family=7, flags=0x100)


@pytest.mark.parametrize("nlmsg_type, header_type", [
    (0x087B, HeaderType(NFNL_SUBSYS_CTNETLINK_TIMEOUT, 123)),
    (0x0000, HeaderType(0, 0)),
    (0xFFFF, HeaderType(255, 255)),
    (0x0100, HeaderType(NFNL_SUBSYS_CTNETLINK, 0)),
])
def test_header_type_split_join(nlmsg_type, header_type):
    assert HeaderType.from_netlink(nlmsg_type) == header_type
    assert header_type.to_netlink() == nlmsg_type


def test_header_type_out_of_range():
    with pytest.raises(InvalidValueError):
        HeaderType(256, 0).to_netlink()

    with pytest.raises(InvalidValueError):
        HeaderType(0, -1).to_netlink()


def test_header_type_str():
    assert str(HeaderType(NFNL_SUBSYS_CTNETLINK_TIMEOUT, 123)) == "NFNL_SUBSYS_CTNETLINK_TIMEOUT|123"
    assert str(HeaderType(200, 1)) == "NFNL_SUBSYS_200|1"
