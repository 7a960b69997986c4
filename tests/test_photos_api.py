"""
Integration tests for photo upload, serving and deletion.
"""

from pathlib import Path

import pytest

from tests.conftest import add_transaction

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 256


def _upload(client, headers, transaction_id, name="receipt.jpg", content=JPEG):
    return client.post(
        f"/api/transaction/{transaction_id}/photo",
        files={"photo": (name, content, "image/jpeg")},
        headers=headers,
    )


@pytest.fixture
def owned(client, alice, login):
    """Alice's headers and one of her transactions."""
    headers = login("alice")
    return headers, add_transaction(client, headers, "URBAN FARE", "2024-03-03T09:00:00Z")


class TestUpload:
    def test_owner_uploads_and_reads_back(self, client, owned, settings):
        headers, transaction_id = owned

        response = _upload(client, headers, transaction_id)

        assert response.status_code == 200
        url = response.json()["photoUrl"]
        assert url.startswith("/uploads/transaction/")
        assert str(transaction_id) not in url.split("/")[3:5]

        served = client.get(url, headers=headers)
        assert served.status_code == 200
        assert served.content == JPEG

        relative = url[len("/uploads/transaction/"):]
        assert Path(settings.upload_dir, *relative.split("/")).is_file()

    def test_listing_shows_photo_url(self, client, owned):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]

        item = client.get(f"/api/transactions/{transaction_id}", headers=headers).json()

        assert item["photos"] == [url]

    @pytest.mark.parametrize("name", ["receipt.gif", "receipt", "receipt.jpg.exe"])
    def test_disallowed_extension_is_400(self, client, owned, name):
        headers, transaction_id = owned
        assert _upload(client, headers, transaction_id, name=name).status_code == 400

    def test_uppercase_extension_is_accepted(self, client, owned):
        headers, transaction_id = owned
        response = _upload(client, headers, transaction_id, name="RECEIPT.PNG")

        assert response.status_code == 200
        assert response.json()["photoUrl"].endswith(".png")

    def test_oversize_upload_is_413_and_leaves_nothing(self, client, owned, settings):
        headers, transaction_id = owned

        response = _upload(client, headers, transaction_id, content=b"x" * (64 * 1024 + 1))

        assert response.status_code == 413
        assert client.get(f"/api/transactions/{transaction_id}", headers=headers).json()["photos"] == []
        assert not any(p.is_file() for p in Path(settings.upload_dir).rglob("*"))

    def test_declared_oversize_is_refused_up_front(self, client, owned, settings):
        headers, transaction_id = owned
        declared = str(settings.max_upload_bytes * 100)

        response = client.post(
            f"/api/transaction/{transaction_id}/photo",
            files={"photo": ("receipt.jpg", JPEG, "image/jpeg")},
            headers={**headers, "Content-Length": declared},
        )

        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"
        assert not any(p.is_file() for p in Path(settings.upload_dir).rglob("*"))

    def test_upload_without_length_is_411(self, client, owned):
        headers, transaction_id = owned

        def chunks():
            yield b"--x\r\n"

        response = client.post(
            f"/api/transaction/{transaction_id}/photo",
            content=chunks(),
            headers={**headers, "Content-Type": "multipart/form-data; boundary=x"},
        )

        assert response.status_code == 411

    def test_unknown_transaction_is_404(self, client, owned):
        headers, _ = owned
        assert _upload(client, headers, 99999).status_code == 404

    def test_stranger_upload_is_404(self, client, owned, bob, login):
        _, transaction_id = owned
        assert _upload(client, login("bob"), transaction_id).status_code == 404

    def test_viewer_upload_is_403(self, client, owned, bob, login):
        headers, transaction_id = owned
        b = login("bob")
        token = client.post("/api/sharing/token", headers=headers).json()["token"]
        client.post("/api/sharing/connections/add", json={"token": token}, headers=b)

        assert _upload(client, b, transaction_id).status_code == 403


class TestServe:
    def test_connected_viewer_can_read(self, client, owned, bob, login):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]
        b = login("bob")
        token = client.post("/api/sharing/token", headers=headers).json()["token"]
        client.post("/api/sharing/connections/add", json={"token": token}, headers=b)

        assert client.get(url, headers=b).status_code == 200

    def test_stranger_gets_404(self, client, owned, bob, login):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]

        assert client.get(url, headers=login("bob")).status_code == 404

    def test_requires_session(self, client, owned):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]

        assert client.get(url).status_code == 401

    def test_tampered_identifier_is_400(self, client, owned):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]
        _, _, _, encrypted_user, encrypted_tx, filename = url.split("/")

        response = client.get(f"/uploads/transaction/garbage/{encrypted_tx}/{filename}", headers=headers)
        assert response.status_code == 400
        response = client.get(f"/uploads/transaction/{encrypted_user}/{encrypted_user}/{filename}", headers=headers)
        assert response.status_code == 404

    def test_unknown_file_is_404(self, client, owned):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]

        assert client.get(url.rsplit("/", 1)[0] + "/photo-missing.jpg", headers=headers).status_code == 404


class TestDelete:
    def test_owner_deletes_by_url(self, client, owned, settings):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]

        response = client.request("DELETE", "/api/photo", json={"filePath": url}, headers=headers)

        assert response.status_code == 200
        assert client.get(url, headers=headers).status_code == 404
        assert client.get(f"/api/transactions/{transaction_id}", headers=headers).json()["photos"] == []
        assert not any(p.is_file() for p in Path(settings.upload_dir).rglob("*"))

    def test_viewer_cannot_delete(self, client, owned, bob, login):
        headers, transaction_id = owned
        url = _upload(client, headers, transaction_id).json()["photoUrl"]
        b = login("bob")
        token = client.post("/api/sharing/token", headers=headers).json()["token"]
        client.post("/api/sharing/connections/add", json={"token": token}, headers=b)

        response = client.request("DELETE", "/api/photo", json={"filePath": url}, headers=b)

        assert response.status_code == 403
        assert client.get(url, headers=headers).status_code == 200

    def test_unknown_photo_is_404(self, client, owned):
        headers, _ = owned
        response = client.request("DELETE", "/api/photo", json={"filePath": "nope/nope/photo.jpg"}, headers=headers)
        assert response.status_code == 404

    def test_deleting_transaction_removes_files(self, client, owned, settings):
        headers, transaction_id = owned
        _upload(client, headers, transaction_id)

        client.post("/api/transaction/delete", json={"id": transaction_id}, headers=headers)

        assert not any(p.is_file() for p in Path(settings.upload_dir).rglob("*"))
