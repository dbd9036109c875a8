import json
from decimal import Decimal

import httpx
import pytest

from tally.core.errors import ProviderTimeoutError, ProviderUnavailableError, SchemaViolationError
from tally.models.schemas import RawImage
from tally.services.extractors.ollama import OllamaExtractor
from tally.utils.image_processing import normalize_image

from fakes import make_image_bytes

REPLY = {
    "merchantName": "Corner Market",
    "purchaseDate": "2026-10-01",
    "items": [{"name": "Milk", "unitPrice": 3.99, "quantity": 1}, {"name": "Bread", "unitPrice": 2.49, "quantity": 2}],
    "declaredTotal": 8.97,
    "currency": "usd",
    "confidence": 0.92,
}


def _image():
    return normalize_image(RawImage(data=make_image_bytes(), mime_type="image/png"))


def _extractor(handler, mode="vision"):
    return OllamaExtractor(
        base_url="http://ollama.test:11434/",
        model="llava",
        timeout=5,
        temperature=0.1,
        mode=mode,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_vision_request_and_decimal_parsing():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"model": "llava", "response": json.dumps(REPLY), "done": True})

    result = await _extractor(handler).parse(_image())
    assert seen["url"] == "http://ollama.test:11434/api/generate"
    assert seen["body"]["stream"] is False
    assert len(seen["body"]["images"]) == 1
    assert seen["body"]["format"]["type"] == "object"
    assert result.provider == "ollama"
    assert result.merchant_name == "Corner Market"
    assert result.currency == "USD"
    assert result.declared_total == Decimal("8.97")
    assert [i.unit_price for i in result.line_items] == [Decimal("3.99"), Decimal("2.49")]


@pytest.mark.asyncio
async def test_text_mode_sends_ocr_text_and_no_image():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": json.dumps(REPLY)})

    extractor = _extractor(handler, mode="text")
    assert extractor.requires_text is True
    result = await extractor.parse(_image(), "MILK 3.99")
    assert "images" not in seen["body"]
    assert "MILK 3.99" in seen["body"]["prompt"]
    assert result.provider == "ollama-text"


@pytest.mark.asyncio
async def test_http_error_status_is_provider_unavailable():
    extractor = _extractor(lambda request: httpx.Response(401, text="unauthorised"))
    with pytest.raises(ProviderUnavailableError) as info:
        await extractor.parse(_image())
    assert info.value.status_code == 401
    assert info.value.is_fatal is True


@pytest.mark.asyncio
async def test_connection_error_is_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailableError):
        await _extractor(handler).parse(_image())


@pytest.mark.asyncio
async def test_timeout_is_provider_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderTimeoutError):
        await _extractor(handler).parse(_image())


@pytest.mark.asyncio
async def test_non_json_model_output_is_schema_violation():
    extractor = _extractor(lambda request: httpx.Response(200, json={"response": "Sorry, here is the receipt:"}))
    with pytest.raises(SchemaViolationError):
        await extractor.parse(_image())


@pytest.mark.asyncio
async def test_negative_price_is_schema_violation():
    bad = dict(REPLY, items=[{"name": "Refund", "unitPrice": -1.00}])
    extractor = _extractor(lambda request: httpx.Response(200, json={"response": json.dumps(bad)}))
    with pytest.raises(SchemaViolationError):
        await extractor.parse(_image())


@pytest.mark.asyncio
async def test_health_check_uses_tags_endpoint():
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": []})

    assert await _extractor(handler).health_check() is True

    def down(request):
        raise httpx.ConnectError("down", request=request)

    assert await _extractor(down).health_check() is False
