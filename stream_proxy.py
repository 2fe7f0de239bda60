"""HLS relay at ``/proxy?url=...``.

Playlists come back rewritten so every segment, sub-playlist and key goes
through this endpoint too; anything else is streamed through untouched.
Upstreams get browser headers with their own origin as referrer, and one
retry with a bare User-Agent when that fails.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

import requests
from flask import Blueprint, Response, current_app, jsonify, make_response, request, stream_with_context

import settings
from normalizer import normalize_http_url, origin_of

proxy_bp = Blueprint("proxy", __name__)

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
MANIFEST_MAGIC = b"#EXTM3U"
URI_ATTR_RE = re.compile(r'URI="([^"]+)"')
CHUNK_SIZE = 256 * 1024

_SEGMENT_TYPES = {
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".aac": "audio/aac",
    ".key": "application/octet-stream",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type, Authorization",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range",
}


# Byte-range answers (EXT-X-BYTERANGE segments) must keep their framing.
RELAYED_SEGMENT_HEADERS = ("Content-Range", "Accept-Ranges")


class UpstreamError(Exception):
    def __init__(self, message: str, status: int = 502, hint: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.hint = hint


def build_proxy_url(target: str, proxy_path: str = "/proxy") -> str:
    return f"{proxy_path}?url={quote(target, safe='')}"


def rewrite_manifest(text: str, base_url: str, proxy_path: str = "/proxy") -> str:
    """Point every URI in an HLS playlist back at the proxy."""
    out = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            out.append(line)
            continue
        if stripped.startswith("#"):
            out.append(URI_ATTR_RE.sub(
                lambda m: f'URI="{build_proxy_url(urljoin(base_url, m.group(1)), proxy_path)}"',
                line,
            ))
            continue
        out.append(build_proxy_url(urljoin(base_url, stripped), proxy_path))
    return "\n".join(out)


def is_manifest(url: str, content_type: str) -> bool:
    return urlparse(url).path.lower().endswith(".m3u8") or "mpegurl" in (content_type or "").lower()


def segment_content_type(url: str, content_type: str) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    if ct and ct not in ("application/octet-stream", "binary/octet-stream", "text/plain"):
        return content_type
    path = urlparse(url).path.lower()
    for ext, mapped in _SEGMENT_TYPES.items():
        if path.endswith(ext):
            return mapped
    return content_type or "application/octet-stream"


def _error_hint(status: int) -> Optional[str]:
    if status in (401, 403):
        return "Upstream refused the request; likely a geo-block or referrer check."
    if status == 404:
        return "Stream not found; the event may have ended or the link moved."
    if status == 429:
        return "Upstream is rate limiting; try again shortly."
    if status >= 500:
        return "Upstream server error."
    return None


def _http():
    return current_app.config.get("PROXY_HTTP_CLIENT") or requests


def _profile() -> settings.HeaderProfile:
    return current_app.config.get("HEADER_PROFILE") or settings.DEFAULT_HEADER_PROFILE


def fetch_upstream(target: str, byte_range: Optional[str] = None):
    """GET ``target`` with browser headers, then once more with minimal ones.

    ``byte_range`` is the player's ``Range`` header and rides along on both tries.
    """
    profile = _profile()
    timeout = current_app.config.get("PROXY_TIMEOUT_SECONDS", settings.PROXY_TIMEOUT_SECONDS)
    attempts = [profile.browser_headers(origin_of(target)), profile.minimal_headers()]
    if byte_range:
        attempts = [dict(h, Range=byte_range) for h in attempts]

    last_error: Optional[UpstreamError] = None
    for headers in attempts:
        try:
            resp = _http().get(target, timeout=timeout, headers=headers, stream=True, allow_redirects=True)
        except requests.Timeout as exc:
            last_error = UpstreamError(f"Upstream timed out: {exc}", 504, "Upstream did not answer in time.")
            continue
        except requests.RequestException as exc:
            last_error = UpstreamError(f"Upstream fetch failed: {exc}", 502, "Upstream unreachable.")
            continue
        if resp.status_code < 400:
            return resp
        resp.close()
        last_error = UpstreamError(
            f"Upstream returned HTTP {resp.status_code}", resp.status_code, _error_hint(resp.status_code),
        )
    raise last_error


@proxy_bp.after_request
def add_cors_headers(resp):
    for key, value in CORS_HEADERS.items():
        resp.headers.setdefault(key, value)
    return resp


@proxy_bp.route("/proxy", methods=["GET", "OPTIONS"])
def proxy():
    if request.method == "OPTIONS":
        return make_response("", 204)

    target = normalize_http_url((request.args.get("url") or "").strip())
    if not target:
        return jsonify({"error": "Missing or invalid url parameter"}), 400

    try:
        resp = fetch_upstream(target, request.headers.get("Range"))
    except UpstreamError as exc:
        print(f"[proxy][WARN] {target}: {exc}")
        body = {"error": str(exc)}
        if exc.hint:
            body["hint"] = exc.hint
        return jsonify(body), exc.status

    base_url = getattr(resp, "url", None) or target
    content_type = resp.headers.get("Content-Type", "")
    chunks = iter(resp.iter_content(chunk_size=CHUNK_SIZE))
    first = b""
    if not is_manifest(base_url, content_type):
        first = next((c for c in chunks if c), b"")

    if is_manifest(base_url, content_type) or first.lstrip().startswith(MANIFEST_MAGIC):
        raw = first + b"".join(c for c in chunks if c)
        resp.close()
        text = raw.decode(getattr(resp, "encoding", None) or "utf-8", errors="replace")
        out = make_response(rewrite_manifest(text, base_url, request.path), 200)
        out.headers["Content-Type"] = MANIFEST_CONTENT_TYPE
        out.headers["Cache-Control"] = (
            "public, max-age={max_age}, s-maxage={max_age}, stale-while-revalidate=10"
        ).format(max_age=settings.PROXY_PLAYLIST_CACHE_SECONDS)
        return out

    def generate():
        try:
            if first:
                yield first
            for chunk in chunks:
                if chunk:
                    yield chunk
        finally:
            resp.close()

    out = Response(stream_with_context(generate()), status=resp.status_code)
    out.headers["Content-Type"] = segment_content_type(base_url, content_type)
    for name in RELAYED_SEGMENT_HEADERS:
        value = resp.headers.get(name)
        if value:
            out.headers[name] = value
    length = resp.headers.get("Content-Length")
    if length and not resp.headers.get("Content-Encoding"):
        out.headers["Content-Length"] = length
    out.headers["Cache-Control"] = (
        "public, max-age={max_age}, s-maxage={max_age}, stale-while-revalidate=60"
    ).format(max_age=settings.PROXY_SEGMENT_CACHE_SECONDS)
    return out
