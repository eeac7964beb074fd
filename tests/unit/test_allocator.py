import ipaddress

import pytest

from capa_subnet.allocator import find_free, split_evenly
from capa_subnet.exceptions import AllocationExhausted, InvalidRequest


def net(value: str):
    return ipaddress.ip_network(value)


PARENT = net("10.10.0.0/16")


def test_find_free_skips_cluster_primary_range():
    assert find_free(PARENT, 24, [net("10.10.0.0/20")]) == net("10.10.16.0/24")


def test_find_free_second_pool_gets_next_block():
    used = [net("10.10.0.0/20"), net("10.10.16.0/24")]

    assert find_free(PARENT, 24, used) == net("10.10.17.0/24")


def test_find_free_reuses_gap_left_by_released_block():
    used = [net("10.10.0.0/20"), net("10.10.17.0/24")]

    assert find_free(PARENT, 24, used) == net("10.10.16.0/24")


def test_find_free_is_deterministic():
    used = [net("10.10.0.0/20"), net("10.10.18.0/23"), net("10.10.16.0/24")]

    first = find_free(PARENT, 24, used)
    second = find_free(PARENT, 24, list(reversed(used)))

    assert first == second == net("10.10.17.0/24")


def test_find_free_result_is_inside_parent_and_disjoint():
    used = [net("10.10.0.0/17"), net("10.10.128.0/24"), net("10.10.129.128/25")]

    result = find_free(PARENT, 24, used)

    assert result.prefixlen == 24
    assert result.subnet_of(PARENT)
    assert not any(result.overlaps(u) for u in used)
    assert result == net("10.10.130.0/24")


def test_find_free_handles_used_range_larger_than_block_and_unaligned():
    used = [net("10.10.0.0/24"), net("10.10.1.64/26"), net("10.10.0.0/23")]

    assert find_free(PARENT, 24, used) == net("10.10.2.0/24")


def test_find_free_ignores_other_address_family():
    assert find_free(PARENT, 24, [net("fd00::/8")]) == net("10.10.0.0/24")


def test_find_free_whole_parent():
    assert find_free(PARENT, 16, []) == PARENT


def test_find_free_exhausted():
    used = [net("10.10.0.0/17"), net("10.10.128.0/17")]

    with pytest.raises(AllocationExhausted):
        find_free(PARENT, 24, used)


def test_find_free_exhausted_when_parent_overlaps_used_range():
    with pytest.raises(AllocationExhausted):
        find_free(PARENT, 24, [net("10.0.0.0/8")])


@pytest.mark.parametrize("prefix_length", [8, 15, 33])
def test_find_free_rejects_impossible_prefix(prefix_length):
    with pytest.raises(InvalidRequest):
        find_free(PARENT, prefix_length, [])


def test_find_free_ipv6():
    parent = net("fd00:10::/48")

    result = find_free(parent, 64, [net("fd00:10::/63")])

    assert result == net("fd00:10:0:2::/64")


def test_split_evenly_covers_block():
    block = net("10.10.16.0/24")

    parts = split_evenly(block, 4)

    assert parts == [
        net("10.10.16.0/26"),
        net("10.10.16.64/26"),
        net("10.10.16.128/26"),
        net("10.10.16.192/26"),
    ]
    assert sum(p.num_addresses for p in parts) == block.num_addresses
    assert list(ipaddress.collapse_addresses(parts)) == [block]


def test_split_evenly_single_zone_returns_block():
    block = net("10.10.16.0/24")

    assert split_evenly(block, 1) == [block]


def test_split_evenly_is_stable():
    block = net("10.10.16.0/24")

    assert split_evenly(block, 2) == split_evenly(block, 2)
    assert split_evenly(block, 2)[1] == net("10.10.16.128/25")


@pytest.mark.parametrize("n", [0, -2, 3, 6])
def test_split_evenly_rejects_non_power_of_two(n):
    with pytest.raises(InvalidRequest):
        split_evenly(net("10.10.16.0/24"), n)


def test_split_evenly_rejects_split_beyond_capacity():
    with pytest.raises(InvalidRequest):
        split_evenly(net("10.10.16.0/31"), 4)
