from __future__ import annotations

import pytest

from containerbuilder import PRIMARY_PAYLOAD, RESOURCE_PAYLOAD, STORED_PAYLOAD, Node, build_container


@pytest.fixture
def sample_nodes():
    stream_length = len(PRIMARY_PAYLOAD) + len(RESOURCE_PAYLOAD) + len(STORED_PAYLOAD)
    return [
        Node(offset=stream_length, size=16, flags=0, path="bogus/outside"),
        Node(offset=0, size=len(PRIMARY_PAYLOAD), flags=4, path="CAB-5f1c2e9a"),
        Node(
            offset=len(PRIMARY_PAYLOAD),
            size=len(RESOURCE_PAYLOAD) + len(STORED_PAYLOAD),
            flags=0,
            path="CAB-5f1c2e9a.resS",
        ),
    ]


@pytest.fixture
def sample_container(sample_nodes):
    return build_container(
        [(PRIMARY_PAYLOAD, 5), (RESOURCE_PAYLOAD, 5), (STORED_PAYLOAD, 0)],
        sample_nodes,
    )
