from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from backoffice.core.errors import InvalidInput, UpstreamFailure
from backoffice.storage.object_store import ObjectStore


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "Operation")


def _store(client=None, bucket="bucket") -> tuple[ObjectStore, MagicMock]:
    client = client or MagicMock()
    return ObjectStore(bucket, client=client), client


def test_put_sends_metadata():
    store, client = _store()
    store.put("koop/1/a.pdf", b"data", "application/pdf", metadata={"user-id": "1"})
    client.put_object.assert_called_once_with(
        Bucket="bucket",
        Key="koop/1/a.pdf",
        Body=b"data",
        ContentType="application/pdf",
        Metadata={"user-id": "1"},
    )


def test_missing_bucket_is_upstream_failure():
    store, client = _store(bucket="")
    with pytest.raises(UpstreamFailure):
        store.put("k", b"")
    client.put_object.assert_not_called()


def test_client_errors_become_generic_failures():
    store, client = _store()
    client.delete_object.side_effect = _client_error("AccessDenied")
    with pytest.raises(UpstreamFailure) as exc:
        store.delete("koop/1/a.pdf")
    assert exc.value.message == "Storage operation failed"


def test_exists_maps_missing_keys_to_false():
    store, client = _store()
    assert store.exists("a") is True
    client.head_object.side_effect = _client_error("404")
    assert store.exists("a") is False
    client.head_object.side_effect = _client_error("AccessDenied")
    with pytest.raises(UpstreamFailure):
        store.exists("a")


def test_list_maps_contents():
    store, client = _store()
    client.list_objects_v2.return_value = {"Contents": [{"Key": "koop/1/x/a.pdf", "Size": 3}]}
    items = store.list("koop/1/")
    assert [(i.key, i.size, i.name) for i in items] == [("koop/1/x/a.pdf", 3, "a.pdf")]


def test_delete_prefix_batches_and_counts():
    store, client = _store()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [{"Key": f"koop/clientes/1/{i}"} for i in range(1500)]},
        {},
    ]
    client.get_paginator.return_value = paginator

    assert store.delete_prefix("koop/clientes/1/") == 1500
    assert client.delete_objects.call_count == 2


def test_delete_prefix_requires_trailing_slash():
    store, client = _store()
    with pytest.raises(InvalidInput):
        store.delete_prefix("koop/clientes/1")
    client.get_paginator.assert_not_called()


def test_signed_url_ttl_is_clamped():
    store, client = _store()
    client.generate_presigned_url.return_value = "https://signed"
    assert store.signed_download_url("k", expires_in=999999, filename='a"b.pdf') == "https://signed"
    kwargs = client.generate_presigned_url.call_args.kwargs
    assert kwargs["ExpiresIn"] == 3600
    assert kwargs["Params"]["ResponseContentDisposition"] == "attachment; filename=\"a'b.pdf\""
