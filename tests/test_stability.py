import asyncio
import base64

import httpx
import pytest

from flux_studio.errors import AuthError, ProviderRejected, TransportError
from flux_studio.models import JobState, OperationKind
from flux_studio.stability import StabilityProvider, result_status
from tests.fakes import make_image


def provider(handler, api_key="sk-test"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StabilityProvider(api_key, "https://api.stability.test", http=http)


def payload(mode, **extra):
    return {"mode": mode, "image": make_image(), "output_format": "png", **extra}


def test_conservative_upscale_completes_inline():
    image = make_image(128, 96)
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(200, json={"image": base64.b64encode(image).decode(), "finish_reason": "SUCCESS"})

    stability = provider(handler)
    job = asyncio.run(stability.submit(OperationKind.UPSCALE, payload("conservative", prompt="sharp")))

    assert seen["url"] == "https://api.stability.test/v2beta/stable-image/upscale/conservative"
    assert seen["auth"] == "Bearer sk-test"
    assert b'name="prompt"' in seen["body"]
    assert job.provider == "stability"
    assert job.id.startswith("conservative-")

    # Inline status needs no further request
    status = asyncio.run(stability.get_status(job))
    assert status.state is JobState.READY
    assert asyncio.run(stability.download(status.artifact_url)) == image


def test_creative_upscale_is_polled():
    responses = iter([
        httpx.Response(200, json={"id": "gen-1"}),
        httpx.Response(202, json={"id": "gen-1", "status": "in-progress"}),
        httpx.Response(200, json={"image": base64.b64encode(b"img").decode(), "finish_reason": "SUCCESS"}),
    ])
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return next(responses)

    stability = provider(handler)
    job = asyncio.run(stability.submit(OperationKind.UPSCALE, payload("creative")))

    assert job.id == "gen-1"
    assert asyncio.run(stability.get_status(job)).state is JobState.PENDING
    assert asyncio.run(stability.get_status(job)).state is JobState.READY
    assert urls[1] == "https://api.stability.test/v2beta/results/gen-1"


def test_content_filter_maps_to_moderation():
    status = result_status({"image": "aGk=", "finish_reason": "CONTENT_FILTERED"})
    assert status.state is JobState.MODERATED_CONTENT
    assert "image" not in status.raw


def test_missing_key():
    with pytest.raises(AuthError):
        asyncio.run(provider(lambda r: httpx.Response(200), api_key="").submit(OperationKind.UPSCALE, payload("fast")))


def test_rejected_upscale():
    stability = provider(lambda r: httpx.Response(400, json={"errors": ["image too large"]}))
    with pytest.raises(ProviderRejected, match="image too large"):
        asyncio.run(stability.submit(OperationKind.UPSCALE, payload("fast")))


def test_account_info():
    def handler(request):
        assert request.url.path == "/v1/user/account"
        return httpx.Response(200, json={"email": "a@b.c", "credits": 12.5})

    assert asyncio.run(provider(handler).account_info())["credits"] == 12.5


def test_unreadable_creative_result_is_transport_error():
    responses = iter([
        httpx.Response(200, json={"id": "gen-1"}),
        httpx.Response(200, text="<html>bad gateway</html>"),
    ])
    stability = provider(lambda request: next(responses))

    job = asyncio.run(stability.submit(OperationKind.UPSCALE, payload("creative")))

    with pytest.raises(TransportError, match="Unreadable"):
        asyncio.run(stability.get_status(job))


def test_pending_reply_without_json_stays_pending():
    responses = iter([httpx.Response(200, json={"id": "gen-1"}), httpx.Response(202, text="")])
    stability = provider(lambda request: next(responses))

    job = asyncio.run(stability.submit(OperationKind.UPSCALE, payload("creative")))

    assert asyncio.run(stability.get_status(job)).state is JobState.PENDING
