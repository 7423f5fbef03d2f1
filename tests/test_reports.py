import asyncio
from contextlib import asynccontextmanager

import pytest

from vetchat.client.reports import ReportFile, ReportUploader
from vetchat.errors import Overloaded, ValidationFailure
from vetchat.main import app
from vetchat.services.ai_stream_service import open_fragment_stream, stream_text_response
from vetchat.services.analysis_gate import AnalysisGate, get_analysis_gate
from vetchat.utils.files import MAX_REPORT_BYTES

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF\n"


def _upload(client, headers, data=PDF_BYTES, content_type="application/pdf"):
    upload_url = client.post("/api/storage/upload-url", headers=headers).json()["upload_url"]
    return client.post(upload_url, content=data, headers={"Content-Type": content_type})


# ---------- Server ----------


def test_upload_url_and_direct_upload(client, alice_headers):
    response = _upload(client, alice_headers)
    assert response.status_code == 200
    assert response.json()["storage_id"]


def test_upload_with_bad_token_is_rejected(client):
    response = client.post(
        "/api/storage/upload",
        params={"token": "forged"},
        content=PDF_BYTES,
        headers={"Content-Type": "application/pdf"},
    )
    assert response.status_code == 401


def test_upload_above_limit_is_rejected(client, alice_headers):
    response = _upload(client, alice_headers, data=b"x" * (MAX_REPORT_BYTES + 1))
    assert response.status_code == 413


def test_report_record_and_analysis(client, alice_headers, bob_headers):
    storage_id = _upload(client, alice_headers).json()["storage_id"]

    created = client.post(
        "/api/reports",
        json={
            "chat_id": "placeholder-chat",
            "file_id": storage_id,
            "file_name": "bloodwork.pdf",
            "mime_type": "application/pdf",
            "size_bytes": len(PDF_BYTES),
        },
        headers=alice_headers,
    )
    assert created.status_code == 200
    report_id = created.json()["id"]

    report = client.get(f"/api/reports/{report_id}", headers=alice_headers).json()
    assert report["chat_id"] is None
    assert report["analysis"] is None

    saved = client.put(f"/api/reports/{report_id}/analysis", json={"analysis": "All good."}, headers=alice_headers)
    assert saved.status_code == 200
    again = client.put(f"/api/reports/{report_id}/analysis", json={"analysis": "Again"}, headers=alice_headers)
    assert again.status_code == 400

    report = client.get(f"/api/reports/{report_id}", headers=alice_headers).json()
    assert report["analysis"] == "All good."
    assert report["analyzed_at"] is not None

    assert client.get(f"/api/reports/{report_id}", headers=bob_headers).status_code == 404
    foreign = client.put(f"/api/reports/{report_id}/analysis", json={"analysis": "x"}, headers=bob_headers)
    assert foreign.status_code == 403


def test_report_for_someone_elses_file_is_forbidden(client, alice_headers, bob_headers):
    storage_id = _upload(client, alice_headers).json()["storage_id"]
    response = client.post(
        "/api/reports",
        json={"file_id": storage_id, "file_name": "x.pdf", "mime_type": "application/pdf", "size_bytes": 1},
        headers=bob_headers,
    )
    assert response.status_code == 403


def test_analyze_streams_and_releases_slot(client, alice_headers, fake_analysis_stream):
    gate = AnalysisGate(limit=1)
    app.dependency_overrides[get_analysis_gate] = lambda: gate

    response = client.post(
        "/api/report/analyze",
        files={"report-file": ("bloodwork.pdf", PDF_BYTES, "application/pdf")},
        headers=alice_headers,
    )

    assert response.status_code == 200
    assert response.text == "## Summary\nAll values are within range."
    assert fake_analysis_stream.calls == [(len(PDF_BYTES), "application/pdf")]
    assert gate.local_active == 0


def test_analyze_rejects_non_pdf(client, alice_headers, fake_analysis_stream):
    response = client.post(
        "/api/report/analyze",
        files={"report-file": ("photo.png", b"\x89PNG", "image/png")},
        headers=alice_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Only PDF documents allowed"
    assert fake_analysis_stream.calls == []


def test_analyze_rejects_oversized_pdf(client, alice_headers, fake_analysis_stream):
    response = client.post(
        "/api/report/analyze",
        files={"report-file": ("big.pdf", b"x" * (MAX_REPORT_BYTES + 1), "application/pdf")},
        headers=alice_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "File exceeds 5MB"
    assert fake_analysis_stream.calls == []


def test_analyze_when_all_slots_busy_returns_429(client, alice_headers, fake_analysis_stream):
    gate = AnalysisGate(limit=1)
    assert asyncio.run(gate.try_acquire())
    app.dependency_overrides[get_analysis_gate] = lambda: gate

    response = client.post(
        "/api/report/analyze",
        files={"report-file": ("bloodwork.pdf", PDF_BYTES, "application/pdf")},
        headers=alice_headers,
    )

    assert response.status_code == 429
    assert response.json() == {"success": False, "message": Overloaded.default_message}
    assert fake_analysis_stream.calls == []


@pytest.mark.asyncio
async def test_slot_released_when_client_leaves_before_body():
    gate = AnalysisGate(limit=2)
    assert await gate.try_acquire()
    assert await gate.try_acquire()

    stream = await open_fragment_stream(lambda stop: iter(["never sent"]))
    response = stream_text_response(stream, on_close=gate.release_soon)

    async def receive():
        await asyncio.Event().wait()

    async def send(message):
        raise OSError("client went away")

    scope = {"type": "http", "asgi": {"spec_version": "2.4"}, "method": "POST", "path": "/"}
    with pytest.raises(Exception):
        await response(scope, receive, send)

    assert gate.local_active == 1
    assert stream.aborted


# ---------- Client ----------


class FakeReportApi:
    def __init__(self, fragments=("Looks ", "fine."), overloaded=False):
        self.fragments = list(fragments)
        self.overloaded = overloaded
        self.events = []

    async def generate_upload_url(self):
        self.events.append("upload-url")
        return "/api/storage/upload?token=t"

    async def upload_bytes(self, upload_url, data, content_type):
        self.events.append("upload")
        return "storage-1"

    @asynccontextmanager
    async def analysis_stream(self, file_name, data, content_type):
        if self.overloaded:
            raise Overloaded()
        self.events.append("stream-open")

        async def fragments():
            for fragment in self.fragments:
                self.events.append(f"fragment:{fragment}")
                yield fragment

        yield fragments()

    async def save_report(self, **kwargs):
        self.events.append(("save_report", kwargs["file_id"], kwargs["chat_id"]))
        return "report-1"

    async def save_analysis(self, report_id, analysis):
        self.events.append(("save_analysis", report_id, analysis))


def _pdf(size=len(PDF_BYTES), content_type="application/pdf"):
    data = PDF_BYTES if size == len(PDF_BYTES) else b"x" * size
    return ReportFile(name="bloodwork.pdf", content_type=content_type, data=data)


def test_uploader_validates_before_any_request():
    api = FakeReportApi()
    uploader = ReportUploader(api)

    with pytest.raises(ValidationFailure) as not_pdf:
        uploader.validate(_pdf(content_type="image/jpeg"))
    assert not_pdf.value.message == "Only PDF documents allowed"

    with pytest.raises(ValidationFailure) as too_big:
        uploader.validate(_pdf(size=MAX_REPORT_BYTES + 1))
    assert too_big.value.message == "File exceeds 5MB"
    assert api.events == []


@pytest.mark.asyncio
async def test_uploader_saves_report_after_stream_opens_and_analysis_at_end():
    api = FakeReportApi()
    uploader = ReportUploader(api, chat_id="chat-1")
    received = []

    analysis = await uploader.upload(_pdf(), on_fragment=received.append)

    assert analysis == "Looks fine."
    assert received == ["Looks ", "fine."]
    assert api.events == [
        "upload-url",
        "upload",
        "stream-open",
        ("save_report", "storage-1", "chat-1"),
        "fragment:Looks ",
        "fragment:fine.",
        ("save_analysis", "report-1", "Looks fine."),
    ]
    assert not uploader.is_uploading
    assert not uploader.is_analyzing


@pytest.mark.asyncio
async def test_uploader_overload_saves_nothing():
    api = FakeReportApi(overloaded=True)
    uploader = ReportUploader(api)

    with pytest.raises(Overloaded) as exc:
        await uploader.upload(_pdf())

    assert exc.value.message == "The engine is currently overloaded, please try again later"
    assert api.events == ["upload-url", "upload"]
    assert not uploader.is_analyzing


@pytest.mark.asyncio
async def test_analyze_without_storage_id_skips_report_record():
    api = FakeReportApi()
    uploader = ReportUploader(api)

    assert await uploader.analyze(_pdf()) == "Looks fine."
    assert not any(isinstance(e, tuple) for e in api.events)
