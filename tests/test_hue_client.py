import json

import httpx
import pytest

from hue_mqtt_bridge.hue_client import HueClient, HueTransportError, HueUpstreamError, resource_path


def test_resource_path_with_and_without_id():
    assert resource_path("light") == "resource/light"
    assert resource_path("grouped_light", "G7") == "resource/grouped_light/G7"


@pytest.mark.asyncio
async def test_hue_client_sends_application_key_and_returns_json_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers.get("hue-application-key") == "abc"
        assert request.url.path == "/clip/v2/resource/light"
        assert request.url.scheme == "https"
        return httpx.Response(200, json={"errors": [], "data": []})

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        body = await client.get_json("resource/light")
        assert body == {"errors": [], "data": []}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_put_sends_json_body():
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"errors": [], "data": [{"rid": "L1", "rtype": "light"}]})

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        result = await client.put_json("resource/light/L1", json_body={"on": {"on": True}})
        assert result.status_code == 200
        assert seen == {"method": "PUT", "path": "/clip/v2/resource/light/L1", "body": {"on": {"on": True}}}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_raises_upstream_error_and_exposes_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"errors": [{"description": "nope"}]})

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(HueUpstreamError) as exc:
            await client.put_json("resource/light/missing", json_body={})
        assert exc.value.status_code == 404
        assert exc.value.body == {"errors": [{"description": "nope"}]}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_retries_reads_on_503():
    calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, json={"errors": [{"description": "busy"}]})
        return httpx.Response(200, json={"data": []})

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        result = await client.request_jsonish(
            method="GET", path="resource/light", retry=True, max_attempts=3, base_delay_ms=1
        )
        assert result.body == {"data": []}
        assert calls["n"] == 3
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_does_not_retry_puts():
    calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="busy")

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(HueUpstreamError) as exc:
            await client.put_json("resource/light/L1", json_body={"on": {"on": False}})
        assert exc.value.body == "busy"
        assert calls["n"] == 1
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_maps_timeouts_to_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = HueClient(bridge_host="bridge.test", application_key="abc", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(HueTransportError):
            await client.put_json("resource/light/L1", json_body={})
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_requires_bridge_host():
    client = HueClient(bridge_host=None, application_key="abc")
    with pytest.raises(HueTransportError):
        await client.get_json("resource/light")
