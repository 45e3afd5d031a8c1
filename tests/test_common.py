import pytest

from mtgproxy.stats.common import (
    TAG_DIRECTION_FROM_CLIENT,
    TAG_DIRECTION_TO_CLIENT,
    TAG_IP_FAMILY,
    TAG_IP_FAMILY_IPV4,
    TAG_IP_FAMILY_IPV6,
    StreamInfo,
    get_direction,
    ip_family,
    ip_to_string,
)


def test_get_direction_read_is_to_client():
    assert get_direction(True) == "to_client"
    assert get_direction(True) == TAG_DIRECTION_TO_CLIENT


def test_get_direction_write_is_from_client():
    assert get_direction(False) == "from_client"
    assert get_direction(False) == TAG_DIRECTION_FROM_CLIENT


def test_tag_returns_name_and_value():
    info = StreamInfo()
    info.tags[TAG_IP_FAMILY] = TAG_IP_FAMILY_IPV4
    assert info.tag(TAG_IP_FAMILY) == (TAG_IP_FAMILY, TAG_IP_FAMILY_IPV4)


def test_tag_of_missing_key_has_empty_value():
    info = StreamInfo()
    assert info.tag("dc") == ("dc", "")


def test_reset_clears_state():
    info = StreamInfo()
    info.is_domain_fronted = True
    info.tags["dc"] = "2"
    info.tags[TAG_IP_FAMILY] = TAG_IP_FAMILY_IPV6
    info.reset()
    assert info.is_domain_fronted is False
    assert info.tags == {}


def test_instances_do_not_share_tags():
    first = StreamInfo()
    second = StreamInfo()
    first.tags["dc"] = "4"
    assert second.tags == {}


@pytest.mark.parametrize(
    "address, family",
    [
        ("10.0.0.10", TAG_IP_FAMILY_IPV4),
        ("::ffff:10.0.0.10", TAG_IP_FAMILY_IPV4),
        ("2001:db8::68", TAG_IP_FAMILY_IPV6),
    ],
)
def test_ip_family(address, family):
    assert ip_family(address) == family


def test_ip_to_string_unwraps_mapped_ipv4():
    assert ip_to_string("::ffff:10.1.0.10") == "10.1.0.10"


def test_ip_family_rejects_garbage():
    with pytest.raises(ValueError):
        ip_family("not-an-ip")