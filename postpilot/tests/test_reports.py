import io
import os
import shutil
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pypdf import PdfReader, PdfWriter
from pypdf.generic import ArrayObject, DictionaryObject, FloatObject, NameObject, TextStringObject

from postpilot.config import settings
from postpilot.errors import TemplateError
from postpilot.models import Post
from postpilot.services import reports

@pytest.fixture(autouse=True)
def empty_templates_dir():
    shutil.rmtree(settings.templates_dir, ignore_errors=True)
    yield

@pytest.fixture
def posts(db, user, ig_client, manual_client):
    rows = [
        Post(owner_id=user.id, client_id=ig_client.id, platform="instagram", post_type="reel",
             content="Behind the ovens", status="published", likes=20, comments=4, views=400),
        Post(owner_id=user.id, client_id=ig_client.id, platform="both", post_type="post",
             content="Weekend <b>sale</b>", status="scheduled"),
        Post(owner_id=user.id, client_id=manual_client.id, platform="facebook", post_type="post",
             content="Tulips", status="draft"),
        Post(owner_id=user.id, client_id=manual_client.id, platform="facebook", post_type="post",
             content="Broken", status="failed"),
    ]
    db.add_all(rows)
    db.commit()
    return db.query(Post).all()

def test_generate_report_summary(posts, ig_client, manual_client):
    report = reports.generate_report(posts, [ig_client, manual_client])
    summary = report["summary"]
    assert summary["total_posts"] == 4
    assert summary["success_rate"] == "25.00%"
    assert summary["total_engagements"] == 24
    assert summary["engagement_rate"] == "6.00%"
    assert report["breakdown"]["by_platform"] == {"instagram": 2, "facebook": 3}
    assert report["period"] == {"start_date": None, "end_date": None}
    assert [row["client_name"] for row in report["top_clients"]] == ["Sunrise Bakery", "Walk-in Florist"]
    assert report["breakdown"]["by_client"][0]["engagement_metrics"]["total_likes"] == 20
    assert sum(row["total"] for row in report["breakdown"]["by_month"]) == 4

def test_empty_report_has_zero_success_rate():
    report = reports.generate_report([], [])
    assert report["summary"]["success_rate"] == "0%"
    assert report["recent_posts"] == []

def test_render_html_fills_placeholders(posts, ig_client):
    report = reports.generate_report(posts, [ig_client],
                                     datetime(2026, 3, 1, tzinfo=timezone.utc), datetime(2026, 3, 31, tzinfo=timezone.utc))
    out = reports.render_html(report, "<p>{{ clientName }}: {{totalPosts}} posts from {{startDate}} ({{unknownThing}})</p>",
                              ig_client)
    assert out == "<p>Sunrise Bakery: 4 posts from 2026-03-01 ({{unknownThing}})</p>"

    default = reports.render_html(report)
    assert "All Clients" in default
    assert "Weekend &lt;b&gt;sale&lt;/b&gt;" in default
    assert "{{" not in default

def test_summary_pdf_is_a_pdf(posts):
    pdf = reports.render_summary_pdf(reports.generate_report(posts, []))
    assert pdf.startswith(b"%PDF")

def test_template_store(ig_client):
    saved = reports.save_template("monthly.html", b"<h1>{{clientName}}</h1>")
    assert saved["filename"].startswith("template-")
    assert saved["original_name"] == "monthly.html"

    listed = reports.list_templates()
    assert [t["filename"] for t in listed] == [saved["filename"]]
    assert listed[0]["type"] == "html"

    body, media_type = reports.build_report_document(reports.generate_report([], []), "html", saved["filename"], ig_client)
    assert body == b"<h1>Sunrise Bakery</h1>"
    assert media_type.startswith("text/html")

    assert reports.delete_template(saved["filename"]) is True
    assert reports.delete_template(saved["filename"]) is False

def test_template_validation():
    with pytest.raises(TemplateError):
        reports.save_template("notes.docx", b"x")
    with pytest.raises(TemplateError):
        reports.template_path("../escape.html")
    with pytest.raises(TemplateError):
        reports.read_template("template-missing.html")

    saved = reports.save_template("layout.pdf", b"%PDF-1.4 not really")
    with pytest.raises(TemplateError):
        reports.build_report_document(reports.generate_report([], []), "html", saved["filename"])

def test_report_endpoint_scoped_to_client(api, auth_headers, posts, ig_client):
    data = api.get("/api/reports", headers=auth_headers, params={"client_id": ig_client.id}).json()
    assert data["summary"]["total_posts"] == 2
    assert api.get("/api/reports", headers=auth_headers, params={"client_id": 9999}).status_code == 404

def test_download_formats(api, auth_headers, posts):
    json_report = api.post("/api/reports/download", headers=auth_headers, json={"format": "json"})
    assert json_report.json()["summary"]["total_posts"] == 4

    html_report = api.post("/api/reports/download", headers=auth_headers, json={"format": "html"})
    assert html_report.headers["content-type"].startswith("text/html")
    assert "attachment" in html_report.headers["content-disposition"]

    pdf_report = api.post("/api/reports/download", headers=auth_headers, json={"format": "pdf"})
    assert pdf_report.headers["content-type"] == "application/pdf"
    assert pdf_report.content.startswith(b"%PDF")

    bad = api.post("/api/reports/download", headers=auth_headers,
                   json={"format": "html", "template_name": "template-nope.html"})
    assert bad.status_code == 400

def test_template_endpoints(api, auth_headers):
    res = api.post("/api/reports/upload-template", headers=auth_headers,
                   files={"template": ("brand.html", b"<p>{{totalPosts}}</p>", "text/html")})
    assert res.status_code == 201
    filename = res.json()["filename"]

    rejected = api.post("/api/reports/upload-template", headers=auth_headers,
                        files={"template": ("brand.txt", b"hi", "text/plain")})
    assert rejected.status_code == 400

    listed = api.get("/api/reports/templates", headers=auth_headers).json()["templates"]
    assert [t["filename"] for t in listed] == [filename]

    assert api.delete(f"/api/reports/templates/{filename}", headers=auth_headers).status_code == 200
    assert api.delete(f"/api/reports/templates/{filename}", headers=auth_headers).status_code == 404
    assert os.listdir(settings.templates_dir) == []

def test_schedule_and_send_test(api, db, user, auth_headers):
    res = api.post("/api/reports/schedule", headers=auth_headers, json={"enabled": True, "day_of_month": 5})
    assert res.json()["report_schedule"] == {"enabled": True, "day_of_month": 5, "email": user.email}
    assert api.post("/api/reports/schedule", headers=auth_headers,
                    json={"enabled": True, "day_of_month": 31}).status_code == 422

    with patch("postpilot.routes.reports.send_report_email", return_value=True) as send:
        assert api.post("/api/reports/send-test", headers=auth_headers, json={}).status_code == 200
    assert send.call_args.args[0] == user.email

    with patch("postpilot.routes.reports.send_report_email", return_value=False):
        assert api.post("/api/reports/send-test", headers=auth_headers, json={}).status_code == 502

def test_send_to_clients(api, auth_headers, posts, ig_client, manual_client):
    with patch("postpilot.routes.reports.send_report_email", side_effect=[True, False]) as send:
        res = api.post("/api/reports/send-to-clients", headers=auth_headers, json={})

    results = res.json()["results"]
    assert [r["status"] for r in results] == ["sent", "failed"]
    assert send.call_args_list[0].args[0] == ig_client.email
    assert send.call_args_list[0].kwargs["client_name"] == "Sunrise Bakery"
    assert res.json()["message"] == "Reports sent to 1 client(s)"

def test_send_to_clients_needs_clients(api, auth_headers):
    res = api.post("/api/reports/send-to-clients", headers=auth_headers, json={"client_ids": [9999]})
    assert res.status_code == 400

def _form_pdf(*field_names) -> bytes:
    """One-page PDF with an empty AcroForm text field per name."""
    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)
    helv = writer._add_object(DictionaryObject({
        NameObject("/Type"): NameObject("/Font"),
        NameObject("/Subtype"): NameObject("/Type1"),
        NameObject("/BaseFont"): NameObject("/Helvetica"),
        NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
    }))
    fields = ArrayObject()
    for i, name in enumerate(field_names):
        top = 740 - 40 * i
        fields.append(writer._add_object(DictionaryObject({
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/FT"): NameObject("/Tx"),
            NameObject("/T"): TextStringObject(name),
            NameObject("/V"): TextStringObject(""),
            NameObject("/DA"): TextStringObject("/Helv 12 Tf 0 g"),
            NameObject("/Rect"): ArrayObject([FloatObject(50), FloatObject(top - 20), FloatObject(350), FloatObject(top)]),
        })))
    page[NameObject("/Annots")] = fields
    writer._root_object[NameObject("/AcroForm")] = DictionaryObject({
        NameObject("/Fields"): fields,
        NameObject("/DA"): TextStringObject("/Helv 12 Tf 0 g"),
        NameObject("/DR"): DictionaryObject({NameObject("/Font"): DictionaryObject({NameObject("/Helv"): helv})}),
    })
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()

def test_pdf_template_fields_are_filled(ig_client):
    filled = reports.fill_pdf_template(_form_pdf("totalPosts", "clientName", "topClients"),
                                       reports.generate_report([], []), ig_client)
    values = PdfReader(io.BytesIO(filled)).get_form_text_fields()
    assert values["totalPosts"] == "0"
    assert values["clientName"] == "Sunrise Bakery"
    assert not values["topClients"]

def test_download_pdf_with_uploaded_form(api, auth_headers, posts):
    filename = api.post("/api/reports/upload-template", headers=auth_headers,
                        files={"template": ("form.pdf", _form_pdf("totalPosts", "successRate"), "application/pdf")}
                        ).json()["filename"]

    res = api.post("/api/reports/download", headers=auth_headers, json={"format": "pdf", "template_name": filename})
    assert res.status_code == 200
    assert res.headers["content-type"] == "application/pdf"
    values = PdfReader(io.BytesIO(res.content)).get_form_text_fields()
    assert (values["totalPosts"], values["successRate"]) == ("4", "25.00%")

def test_html_template_must_be_utf8(api, auth_headers):
    with pytest.raises(TemplateError):
        reports.save_template("brand.html", b"<p>\xff\xfe{{totalPosts}}</p>")

    res = api.post("/api/reports/upload-template", headers=auth_headers,
                   files={"template": ("brand.html", b"<p>\xff\xfe{{totalPosts}}</p>", "text/html")})
    assert res.status_code == 400

def test_unreadable_stored_template_is_a_bad_request(api, auth_headers, ig_client):
    saved = reports.save_template("brand.html", b"<p>{{totalPosts}}</p>")
    # Replaced on disk after upload
    with open(reports.template_path(saved["filename"]), "wb") as f:
        f.write(b"<p>\xff\xfe</p>")

    res = api.post("/api/reports/download", headers=auth_headers,
                   json={"format": "html", "template_name": saved["filename"]})
    assert res.status_code == 400

    with patch("postpilot.routes.reports.send_report_email", return_value=True) as send:
        res = api.post("/api/reports/send-test", headers=auth_headers, json={"template_name": saved["filename"]})
    assert res.status_code == 400
    send.assert_not_called()

    with patch("postpilot.routes.reports.send_report_email", return_value=True):
        res = api.post("/api/reports/send-to-clients", headers=auth_headers, json={"template_name": saved["filename"]})
    assert [r["status"] for r in res.json()["results"]] == ["failed"]

def test_oversized_template_is_rejected(api, auth_headers):
    with patch.object(reports, "MAX_TEMPLATE_BYTES", 16):
        res = api.post("/api/reports/upload-template", headers=auth_headers,
                       files={"template": ("brand.html", b"<p>" + b"x" * 100 + b"</p>", "text/html")})
    assert res.status_code == 400
    assert reports.list_templates() == []
