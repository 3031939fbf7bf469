"""Tests for push topic extraction."""

from collections.abc import Callable

import pytest
from cryptography import x509

from mdm_server.lib.errors import TopicNotFoundError
from mdm_server.lib.topic import USER_ID_OID, topic_from_cert


class TestTopicFromCert:
    def test_user_id_oid_value(self) -> None:
        assert USER_ID_OID.dotted_string == "0.9.2342.19200300.100.1.1"

    def test_returns_topic(self, make_push_cert: Callable[[str | None], x509.Certificate]) -> None:
        assert topic_from_cert(make_push_cert("com.example.push")) == "com.example.push"

    @pytest.mark.parametrize(
        "topic",
        [
            "com.apple.mgmt.External.0d3e8f8c-1a2b-4c5d-9e0f-123456789abc",
            "com.example.push",
        ],
    )
    def test_topic_variants(
        self, make_push_cert: Callable[[str | None], x509.Certificate], topic: str
    ) -> None:
        assert topic_from_cert(make_push_cert(topic)) == topic

    def test_missing_user_id_fails(self, make_push_cert: Callable[[str | None], x509.Certificate]) -> None:
        with pytest.raises(TopicNotFoundError, match="UserID OID"):
            topic_from_cert(make_push_cert(None))
