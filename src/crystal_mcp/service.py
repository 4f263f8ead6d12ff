"""Request/response envelope routing crystal tools to per-repository coordinators."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from crystal_mcp.config import ConfigOverrides, load_effective_config
from crystal_mcp.coordinator import Coordinator
from crystal_mcp.errors import NotInitializedError
from crystal_mcp.logging import AuditEvent, JsonlAuditLogger, sanitize_arguments, utc_timestamp
from crystal_mcp.security import PathBlockedError
from crystal_mcp.tools import ToolDispatchError, ToolRegistry, register_builtin_tools

logger = logging.getLogger(__name__)

AUDIT_FILE_NAME = "audit.jsonl"


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


class CrystalService:
    """Transport-agnostic tool service holding one coordinator per repository root."""

    def __init__(
        self,
        default_repo_root: Path | None = None,
        overrides: ConfigOverrides | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_root = default_repo_root.resolve() if default_repo_root else None
        self._overrides = overrides or ConfigOverrides()
        self._clock = clock
        self._coordinators: dict[Path, Coordinator] = {}
        self._audit_loggers: dict[Path, JsonlAuditLogger] = {}
        self._open_lock = asyncio.Lock()
        self._registry = ToolRegistry()
        register_builtin_tools(self._registry, self.coordinator_for)
        self._fallback_request_counter = 0

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def tool_names(self) -> tuple[str, ...]:
        return self._registry.names()

    async def coordinator_for(self, repo_path: str | None) -> Coordinator:
        """Return the coordinator for ``repo_path``, creating it on first use."""
        root = self._resolve_root(repo_path)
        async with self._open_lock:
            existing = self._coordinators.get(root)
            if existing is not None:
                return existing
            overrides = self._overrides
            if root != self._default_root:
                overrides = replace(overrides, data_dir=None)
            try:
                config = load_effective_config(root, overrides)
            except (ValueError, OSError) as error:
                raise ToolDispatchError(
                    code="INVALID_PARAMS",
                    message=f"Invalid configuration for {root}: {error}",
                ) from error
            coordinator = Coordinator(config, clock=self._clock)
            self._coordinators[root] = coordinator
            self._audit_loggers[root] = JsonlAuditLogger(config.data_dir / AUDIT_FILE_NAME)
            logger.info("Opened repository %s (data dir %s)", root, config.data_dir)
            return coordinator

    async def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle one JSON-encoded request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            await self.log_request(request_id, "invalid_json", {}, response)
            return response
        return await self.handle_payload(payload)

    async def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed request."""
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            await self.log_request(request_id, "invalid_request", {}, parsed)
            return parsed

        request = parsed
        if request.method == "tools/call":
            tool_name_value = request.params.get("name")
            arguments_value = request.params.get("arguments", {})
            if not isinstance(tool_name_value, str) or not tool_name_value:
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.name must be a non-empty string.",
                )
            if not isinstance(arguments_value, dict):
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.arguments must be an object.",
                )
            tool_name = tool_name_value
            arguments = arguments_value
        elif request.method == "tools/list":
            return self.success_response(
                request_id=request.request_id,
                result={"tools": list(self.tool_names())},
            )
        else:
            tool_name = request.method
            arguments = request.params

        response = await self._dispatch(request.request_id, tool_name, arguments)
        await self.log_request(request.request_id, tool_name, arguments, response)
        return response

    async def _dispatch(
        self, request_id: str, tool_name: str, arguments: dict[str, object]
    ) -> dict[str, object]:
        try:
            result = await self._registry.dispatch(tool_name, arguments)
        except PathBlockedError as error:
            return self.blocked_response(request_id, reason=error.reason, hint=error.hint)
        except NotInitializedError as error:
            return self.error_response(request_id, code="NOT_INITIALIZED", message=str(error))
        except ToolDispatchError as error:
            return self.error_response(request_id, code=error.code, message=error.message)
        except Exception:
            logger.exception("Unhandled error while executing %s", tool_name)
            return self.error_response(
                request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing tool.",
            )
        return self.success_response(request_id=request_id, result=result)

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate a request payload and return the normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})
        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )
        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate sequential fallback request IDs for invalid or missing IDs."""
        self._fallback_request_counter += 1
        return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(request_id: str, result: dict[str, object]) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "blocked": False,
        }

    @staticmethod
    def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": False,
            "result": {},
            "blocked": False,
            "error": {"code": code, "message": message},
        }

    @staticmethod
    def blocked_response(request_id: str, reason: str, hint: str) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": False,
            "result": {"reason": reason, "hint": hint},
            "blocked": True,
            "error": {"code": "PATH_BLOCKED", "message": reason},
        }

    async def log_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, object],
        response: dict[str, object],
    ) -> None:
        """Append one sanitized audit event to the repository's audit log."""
        audit_logger = self._audit_logger_for(arguments.get("repo_path"))
        if audit_logger is None:
            logger.debug("No repository audit log for request %s (%s)", request_id, tool_name)
            return
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            tool=tool_name,
            ok=bool(response.get("ok", False)),
            blocked=bool(response.get("blocked", False)),
            error_code=error_code,
            metadata=sanitize_arguments(arguments),
        )
        try:
            await audit_logger.append(event)
        except OSError as error:
            logger.warning("Failed to append audit event to %s: %s", audit_logger.path, error)

    def _audit_logger_for(self, repo_path: object) -> JsonlAuditLogger | None:
        if isinstance(repo_path, str) and repo_path.strip():
            root = Path(repo_path).expanduser().resolve()
        elif self._default_root is not None:
            root = self._default_root
        else:
            return None
        return self._audit_loggers.get(root)

    def _resolve_root(self, repo_path: str | None) -> Path:
        if repo_path is None:
            if self._default_root is None:
                raise ToolDispatchError(
                    code="INVALID_PARAMS",
                    message="repo_path is required when no default repository is configured.",
                )
            root = self._default_root
        else:
            root = Path(repo_path).expanduser().resolve()
        if not root.is_dir():
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message=f"Repository root is not a directory: {root}",
            )
        return root


def create_service(
    repo_root: str | None = None,
    data_dir: str | None = None,
    overrides: ConfigOverrides | None = None,
) -> CrystalService:
    """Create a configured service instance."""
    effective = overrides or ConfigOverrides()
    if data_dir is not None:
        effective = replace(effective, data_dir=Path(data_dir).resolve())
    root = Path(repo_root) if repo_root is not None else None
    return CrystalService(default_repo_root=root, overrides=effective)
