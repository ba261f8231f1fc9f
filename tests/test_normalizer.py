"""Tests for source normalization."""
import httpx
import pytest

from sourcebook.errors import EmptyContent, ExtractionFailed, FetchFailed, UnsupportedFormat
from sourcebook.rag import normalizer as normalizer_module
from sourcebook.rag.models import FileSource, SourceKind, TextSource, UrlSource
from sourcebook.rag.normalizer import (
    SourceNormalizer,
    extract_pdf_text,
    flatten_csv,
    markdown_title,
    resolve_media_type,
    tidy_text,
)

ARTICLE_HTML = """<html>
<head><title>City Guide</title></head>
<body>
  <div class="sidebar"><a href="/other">Related link you should ignore</a></div>
  <article>
    <p>Toronto is the capital of the province of Ontario, and it is the most populous city in Canada, with a long waterfront along Lake Ontario.</p>
    <p>The city is known for its neighbourhoods, its transit network, and a skyline dominated by the CN Tower, which opened to the public in 1976.</p>
    <p>Visitors often take the ferry to the Toronto Islands, walk through Kensington Market, or spend an afternoon at the Royal Ontario Museum.</p>
  </article>
</body>
</html>"""


def _url_normalizer(handler):
    return SourceNormalizer(fetch_timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_direct_text():
    result = await SourceNormalizer().normalize(TextSource(text="Some pasted notes."))

    assert result.text == "Some pasted notes."
    assert result.descriptor.origin_id == "direct_text"
    assert result.descriptor.kind == SourceKind.TEXT
    assert result.descriptor.media_type == "text/plain"
    assert result.descriptor.title is None


@pytest.mark.asyncio
async def test_blank_text_is_empty_content():
    with pytest.raises(EmptyContent):
        await SourceNormalizer().normalize(TextSource(text="   \n\t "))


@pytest.mark.asyncio
async def test_csv_rows_become_key_value_lines():
    source = FileSource(data=b"name,age\nAlice,30\n", filename="people.csv", media_type="text/csv")

    result = await SourceNormalizer().normalize(source)

    assert result.text == "name: Alice, age: 30"
    assert result.descriptor.origin_id == "people.csv"
    assert result.descriptor.kind == SourceKind.FILE
    assert result.descriptor.media_type == "text/csv"
    assert result.descriptor.title == "people.csv"


@pytest.mark.asyncio
async def test_markdown_title_from_frontmatter():
    text = "---\ntitle: Field Notes\ntags: [travel]\n---\n# Heading\n\nBody text."
    source = FileSource(data=text.encode(), filename="notes.md", media_type="text/markdown")

    result = await SourceNormalizer().normalize(source)

    assert result.descriptor.title == "Field Notes"
    assert "Body text." in result.text


@pytest.mark.asyncio
async def test_generic_media_type_falls_back_to_extension():
    source = FileSource(
        data=b"# Trip Plan\n\nDay one: the islands.",
        filename="plan.md",
        media_type="application/octet-stream",
    )

    result = await SourceNormalizer().normalize(source)

    assert result.descriptor.media_type == "text/markdown"
    assert result.descriptor.title == "Trip Plan"


@pytest.mark.asyncio
async def test_plain_text_file_decodes_invalid_utf8():
    source = FileSource(data=b"caf\xe9 menu", filename="menu.txt", media_type="text/plain")

    result = await SourceNormalizer().normalize(source)

    assert result.text.startswith("caf")
    assert result.text.endswith(" menu")


@pytest.mark.asyncio
async def test_unsupported_file_type():
    source = FileSource(data=b"\x89PNG", filename="photo.png", media_type="image/png")

    with pytest.raises(UnsupportedFormat):
        await SourceNormalizer().normalize(source)


@pytest.mark.asyncio
async def test_pdf_is_routed_to_pdf_extraction(monkeypatch):
    seen = {}

    def fake_extract(data):
        seen["data"] = data
        return "Page one text\n\nPage two text"

    monkeypatch.setattr(normalizer_module, "extract_pdf_text", fake_extract)
    source = FileSource(data=b"%PDF-1.4 ...", filename="report.pdf")

    result = await SourceNormalizer().normalize(source)

    assert seen["data"] == b"%PDF-1.4 ..."
    assert result.text == "Page one text\n\nPage two text"
    assert result.descriptor.media_type == "application/pdf"


@pytest.mark.asyncio
async def test_pdf_without_text_is_empty_content(monkeypatch):
    monkeypatch.setattr(normalizer_module, "extract_pdf_text", lambda data: "")
    source = FileSource(data=b"%PDF-1.4", filename="scan.pdf", media_type="application/pdf")

    with pytest.raises(EmptyContent):
        await SourceNormalizer().normalize(source)


def test_corrupt_pdf_raises_extraction_failed():
    with pytest.raises(ExtractionFailed):
        extract_pdf_text(b"this is not a pdf at all")


@pytest.mark.asyncio
async def test_url_article_extraction():
    def handler(request):
        assert request.headers["User-Agent"]
        return httpx.Response(200, html=ARTICLE_HTML)

    result = await _url_normalizer(handler).normalize(UrlSource(url="https://example.com/toronto"))

    assert result.descriptor.origin_id == "https://example.com/toronto"
    assert result.descriptor.kind == SourceKind.URL
    assert result.descriptor.media_type == "text/html"
    assert result.descriptor.title == "City Guide"
    assert "capital of the province of Ontario" in result.text
    assert "Related link" not in result.text


@pytest.mark.asyncio
async def test_url_without_title_gets_fallback_title():
    html = ARTICLE_HTML.replace("<title>City Guide</title>", "")

    result = await _url_normalizer(lambda request: httpx.Response(200, html=html)).normalize(
        UrlSource(url="https://example.com/untitled")
    )

    assert result.descriptor.title == "Untitled web page"


@pytest.mark.asyncio
async def test_url_error_status_is_fetch_failed():
    normalizer = _url_normalizer(lambda request: httpx.Response(404, text="missing"))

    with pytest.raises(FetchFailed) as exc_info:
        await normalizer.normalize(UrlSource(url="https://example.com/missing"))

    assert "404" in exc_info.value.message


@pytest.mark.asyncio
async def test_url_network_error_is_fetch_failed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchFailed):
        await _url_normalizer(handler).normalize(UrlSource(url="https://example.com/down"))


@pytest.mark.asyncio
async def test_url_empty_body_is_extraction_failed():
    normalizer = _url_normalizer(lambda request: httpx.Response(200, text=""))

    with pytest.raises(ExtractionFailed):
        await normalizer.normalize(UrlSource(url="https://example.com/blank"))


@pytest.mark.parametrize(
    "filename,declared,expected",
    [
        ("report.PDF", None, "application/pdf"),
        ("data.csv", "text/csv; charset=utf-8", "text/csv"),
        ("upload", "application/x-pdf", "application/pdf"),
        ("notes.txt", "", "text/plain"),
        ("notes.markdown", "application/octet-stream", "text/markdown"),
        ("photo.png", "image/png", "image/png"),
    ],
)
def test_resolve_media_type(filename, declared, expected):
    assert resolve_media_type(filename, declared) == expected


def test_flatten_csv_handles_ragged_rows():
    assert flatten_csv("a,b\n1\n\n2,3,4\n") == "a: 1, b: \na: 2, b: 3"


def test_markdown_title_prefers_first_heading_without_frontmatter():
    assert markdown_title("Intro\n\n# First Heading\n\n# Second") == "First Heading"
    assert markdown_title("no headings here") is None


def test_tidy_text_collapses_blank_runs():
    assert tidy_text("  line one  \n\n\n\nline two  ") == "line one\n\nline two"
