# services/api/imagecraft/client.py

"""
Async client for the ImageCraft API.

Mirrors the browser flow: process anonymously, save the result before the
sign-in redirect, restore it afterwards, then download with retries and
release the provider asset once the file is safely on disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx

from .resilience import RetryPolicy
from .transfer import download_and_release
from .work_preservation import FileSlot, HandoffStore, ProcessingKind, ProcessingState

LOG = logging.getLogger("imagecraft.client")

TOOL_ENDPOINTS: Dict[str, str] = {
    "compress": "/v1/image-compress",
    "optimize": "/v1/image-optimize",
    "background-remove": "/v1/background-remove",
    "format-convert": "/v1/format-convert",
    "social-resizer": "/v1/social-resize",
    "passport-maker": "/v1/passport-resize",
}

DEFAULT_STATE_PATH = Path.home() / ".imagecraft" / "processing_state.json"


class ImageCraftAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_validation(self) -> bool:
        """Fix-your-input errors, as opposed to try-again ones."""
        return 400 <= self.status_code < 500 and self.status_code not in (401, 408, 429)


@dataclass
class ToolResult:
    kind: ProcessingKind
    url: str
    size: int
    original_size: int
    file_name: str = ""
    public_id: Optional[str] = None
    target_size_kb: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_state(self) -> ProcessingState:
        return ProcessingState(
            processed_result_ref=self.url,
            original_size_bytes=self.original_size,
            result_size_bytes=self.size,
            source_file_name=self.file_name,
            target_size_kb=self.target_size_kb,
            processing_kind=self.kind,
        )

    @classmethod
    def from_state(cls, state: ProcessingState) -> "ToolResult":
        return cls(
            kind=state.processing_kind,
            url=state.processed_result_ref,
            size=state.result_size_bytes,
            original_size=state.original_size_bytes,
            file_name=state.source_file_name,
            target_size_kb=state.target_size_kb,
        )

    def download_name(self) -> str:
        base = self.file_name or "image"
        prefix = "compressed" if self.kind == "compress" else self.kind
        return f"{prefix}-{base}"


@dataclass
class SignInRequired:
    sign_in_url: str
    message: str = "Please sign in to download"


@dataclass
class DownloadOutcome:
    ok: bool
    path: Optional[Path]
    message: str


class ImageCraftClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        store: Optional[HandoffStore] = None,
        http: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        sign_in_page: str = "/sign-in",
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.store = store or HandoffStore(FileSlot(DEFAULT_STATE_PATH))
        self.policy = policy
        self.sign_in_page = sign_in_page
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def __aenter__(self) -> "ImageCraftClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    @property
    def signed_in(self) -> bool:
        return bool(self.token)

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    # -----------------------------
    # Processing
    # -----------------------------

    async def process(self, kind: ProcessingKind, path: Union[str, Path], **fields: Any) -> ToolResult:
        endpoint = TOOL_ENDPOINTS.get(kind)
        if endpoint is None:
            raise ValueError(f"unknown tool: {kind}")

        path = Path(path)
        data = {k: str(v) for k, v in fields.items() if v is not None}
        resp = await self.http.post(
            endpoint,
            files={"file": (path.name, path.read_bytes())},
            data=data,
            headers=self._auth_headers(),
        )
        payload = _json_or_empty(resp)
        if resp.status_code != 200:
            raise ImageCraftAPIError(resp.status_code, payload.get("error") or resp.reason_phrase)

        return ToolResult(
            kind=kind,
            url=payload["url"],
            public_id=payload.get("publicId"),
            size=int(payload.get("compressedSize") or payload.get("size") or 0),
            original_size=int(payload.get("originalSize") or path.stat().st_size),
            file_name=path.name,
            target_size_kb=fields.get("targetSize"),
            raw=payload,
        )

    async def compress(self, path: Union[str, Path], target_kb: int) -> ToolResult:
        return await self.process("compress", path, targetSize=int(target_kb))

    # -----------------------------
    # Sign-in handoff
    # -----------------------------

    def sign_in_url(self, return_to: str) -> str:
        return f"{self.sign_in_page}?redirect_url={quote(return_to, safe='')}"

    def restore(self) -> Optional[ToolResult]:
        """Result saved before the sign-in redirect, if still fresh. Read once."""
        state = self.store.consume()
        if state is None:
            return None
        LOG.info("restored %s result from before sign-in", state.processing_kind)
        return ToolResult.from_state(state)

    # -----------------------------
    # Download
    # -----------------------------

    async def download(
        self,
        result: ToolResult,
        dest: Union[str, Path],
        *,
        return_to: str = "/",
    ) -> Union[DownloadOutcome, SignInRequired]:
        if not self.signed_in:
            self.store.save(result.to_state())
            return SignInRequired(sign_in_url=self.sign_in_url(return_to))

        dest = Path(dest)
        if dest.is_dir():
            dest = dest / result.download_name()

        async def _release():
            body = {"publicId": result.public_id} if result.public_id else {"url": result.url}
            resp = await self.http.request("DELETE", "/v1/images", json=body, headers=self._auth_headers())
            resp.raise_for_status()

        ok = await download_and_release(
            self.http,
            "/v1/download",
            dest,
            _release,
            params={"url": result.url, "filename": result.download_name()},
            headers=self._auth_headers(),
            policy=self.policy,
        )
        if not ok:
            # nothing cleared, nothing deleted: clicking download again just works
            return DownloadOutcome(ok=False, path=None, message="Download failed. Click download to try again.")

        self.store.clear()
        return DownloadOutcome(ok=True, path=dest, message="Download completed!")


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
