"""Tests for the identifier library."""

import base64
import json

import pytest
from syrupy.assertion import SnapshotAssertion

from helm_provider.exceptions import DecodeError, ValidationError
from helm_provider.identifier import ResourceId, decode_id, encode_id


def test_encode_id_format(snapshot: SnapshotAssertion) -> None:
    """Test the encoded form is stable and compatible with existing identifiers."""
    opaque = encode_id(
        cluster_id="eks-cluster", name="web", namespace="default", region="us-east-1"
    )
    assert opaque == snapshot
    assert "=" not in opaque


@pytest.mark.parametrize(
    ("cluster_id", "kube_config"),
    [
        ("eks-cluster", None),
        (None, "arn:aws:secretsmanager:us-east-1:111122223333:secret:kubeconfig"),
    ],
)
def test_round_trip(cluster_id: str | None, kube_config: str | None) -> None:
    """Test that decoding an encoded identifier recovers every field."""
    opaque = encode_id(
        cluster_id=cluster_id,
        kube_config=kube_config,
        name="web",
        namespace="apps",
        region="eu-west-1",
    )
    assert decode_id(opaque) == ResourceId(
        cluster_id=cluster_id,
        kube_config=kube_config,
        region="eu-west-1",
        name="web",
        namespace="apps",
    )


def test_round_trip_url_unsafe_bytes() -> None:
    """Test values whose encoding would contain '+' or '/' in standard base64."""
    opaque = encode_id(
        cluster_id="cluster>>>???", name="web~~~", namespace="ns", region="r"
    )
    assert "+" not in opaque
    assert "/" not in opaque
    assert decode_id(opaque).cluster_id == "cluster>>>???"


def test_omits_empty_fields() -> None:
    """Test that the unused cluster target is not part of the payload."""
    opaque = encode_id(cluster_id="c", name="n", namespace="ns", region="r")
    payload = json.loads(base64.urlsafe_b64decode(opaque + "=" * (-len(opaque) % 4)))
    assert payload == {"ClusterID": "c", "Region": "r", "Name": "n", "Namespace": "ns"}


def test_both_cluster_targets() -> None:
    """Test that ClusterID and KubeConfig are mutually exclusive."""
    with pytest.raises(ValidationError, match="Both ClusterID or KubeConfig"):
        encode_id(
            cluster_id="c", kube_config="k", name="n", namespace="ns", region="r"
        )


def test_no_cluster_target() -> None:
    """Test that one of ClusterID or KubeConfig is required."""
    with pytest.raises(ValidationError, match="Either ClusterID or KubeConfig"):
        encode_id(name="n", namespace="ns", region="r")


@pytest.mark.parametrize(
    ("name", "namespace", "region"),
    [
        ("", "ns", "r"),
        ("n", "", "r"),
        ("n", "ns", ""),
    ],
)
def test_empty_fields(name: str, namespace: str, region: str) -> None:
    """Test that name, namespace and region are required."""
    with pytest.raises(ValidationError, match="Incorrect values"):
        encode_id(cluster_id="c", name=name, namespace=namespace, region=region)


@pytest.mark.parametrize(
    "opaque",
    [
        "",
        "not base64!",
        # Valid base64 of a JSON list
        "WyJhIl0",
        # Missing Namespace
        "eyJDbHVzdGVySUQiOiJjIiwiUmVnaW9uIjoiciIsIk5hbWUiOiJuIn0",
        # Name is a number
        "eyJDbHVzdGVySUQiOiJjIiwiUmVnaW9uIjoiciIsIk5hbWUiOjEsIk5hbWVzcGFjZSI6Im5zIn0",
        # Both cluster targets
        "eyJDbHVzdGVySUQiOiJhIiwiS3ViZUNvbmZpZyI6ImIiLCJSZWdpb24iOiJyIiwiTmFtZSI6Im4iLCJOYW1lc3BhY2UiOiJucyJ9",
    ],
)
def test_decode_invalid(opaque: str) -> None:
    """Test that malformed identifiers raise a DecodeError."""
    with pytest.raises(DecodeError):
        decode_id(opaque)


@pytest.mark.parametrize("suffix", ["=", "==", "===="])
def test_decode_padded(suffix: str) -> None:
    """Test that only the unpadded form of an identifier is accepted."""
    opaque = encode_id(cluster_id="c", name="n", namespace="ns", region="r")
    with pytest.raises(DecodeError, match="must not be padded"):
        decode_id(opaque + suffix)


def test_decode_standard_alphabet() -> None:
    """Test that the standard base64 alphabet is rejected."""
    opaque = encode_id(
        cluster_id="cluster>>>???", name="web~~~", namespace="ns", region="r"
    )
    assert "-" in opaque or "_" in opaque
    with pytest.raises(DecodeError):
        decode_id(opaque.replace("-", "+").replace("_", "/"))
