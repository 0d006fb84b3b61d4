"""
Ready-made destinations for common log collectors.

These only preset the endpoint and headers; every collector is reached
through the same generic HTTP transport.
"""

import base64

from .destinations import DEFAULT_TIMEOUT, Destination


def custom(
    name: str,
    endpoint: str,
    token: str | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Destination:
    """Any HTTP endpoint accepting the JSON envelope."""
    return Destination(name=name, endpoint=endpoint, credential=token, headers=headers or {}, timeout=timeout)


def logtail(source_token: str) -> Destination:
    """Logtail (Better Stack)."""
    return Destination(name="logtail", endpoint="https://in.logtail.com", credential=source_token)


def datadog(api_key: str, site: str = "datadoghq.com") -> Destination:
    return Destination(
        name="datadog",
        endpoint=f"https://http-intake.logs.{site}/v1/input",
        headers={"DD-API-KEY": api_key},
    )


def elasticsearch(url: str, index: str, api_key: str | None = None) -> Destination:
    headers = {"Authorization": f"ApiKey {api_key}"} if api_key else {}
    return Destination(name="elasticsearch", endpoint=f"{url.rstrip('/')}/{index}/_doc", headers=headers)


def splunk(url: str, token: str) -> Destination:
    """Splunk HTTP Event Collector."""
    return Destination(
        name="splunk",
        endpoint=f"{url.rstrip('/')}/services/collector/event",
        headers={"Authorization": f"Splunk {token}"},
    )


def loki(url: str, username: str | None = None, password: str | None = None) -> Destination:
    """Grafana Loki push endpoint, with optional basic auth."""
    headers = {}
    if username and password:
        encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
        headers["Authorization"] = f"Basic {encoded}"
    return Destination(name="loki", endpoint=f"{url.rstrip('/')}/loki/api/v1/push", headers=headers)
