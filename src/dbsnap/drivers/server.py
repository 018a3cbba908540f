"""Driver-side runtime shared by the bundled drivers.

Reads one request from stdin, dispatches it, writes one response line to
stdout and exits. Diagnostics go to stderr only, so stdout carries nothing
but the response envelope.

Exit codes:
    0: A response was produced (including a handler error envelope)
    1: The request was unreadable or named an unknown method

Usage:
    from dbsnap.drivers.server import DriverServer

    server = DriverServer(
        name="sqlite",
        version="0.1.0",
        features=DriverFeatures(SupportsRowCounts=True),
        extract=extract_schema,
    )
    sys.exit(server.run())
"""

import asyncio
import inspect
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TextIO

from pydantic import ValidationError

from dbsnap.drivers.protocol import (
    METHOD_EXTRACT_SCHEMA,
    METHOD_GET_FEATURES,
    METHOD_GET_VERSION,
    DriverFeatures,
    DriverRequest,
    DriverResponse,
    ExtractParams,
)
from dbsnap.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

ExtractFunc = Callable[[ExtractParams], SchemaSnapshot | Awaitable[SchemaSnapshot]]


class DriverServer:
    """Dispatches protocol requests to a driver's extraction function.

    Args:
        name: Engine name reported by ``get_version``.
        version: Driver version reported by ``get_version``.
        features: Capabilities reported by ``get_features``.
        extract: Sync or async callable producing a snapshot.
    """

    def __init__(
        self,
        name: str,
        version: str,
        features: DriverFeatures,
        extract: ExtractFunc,
    ):
        self.name = name
        self.version = version
        self.features = features
        self._extract = extract
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            METHOD_GET_VERSION: self._get_version,
            METHOD_GET_FEATURES: self._get_features,
            METHOD_EXTRACT_SCHEMA: self._extract_schema,
        }

    async def _get_version(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"name": self.name, "version": self.version}

    async def _get_features(self, params: dict[str, Any]) -> dict[str, Any]:
        return self.features.model_dump()

    async def _extract_schema(self, params: dict[str, Any]) -> dict[str, Any]:
        extract_params = ExtractParams.model_validate(params)
        result = self._extract(extract_params)
        if inspect.isawaitable(result):
            result = await result
        snapshot = result.model_copy(
            update={
                "db_type": result.db_type or self.name,
                "metadata": result.metadata.model_copy(
                    update={"version": result.metadata.version or self.version}
                ),
            }
        )
        return snapshot.model_dump(mode="json")

    async def handle(self, raw: str) -> tuple[DriverResponse, int]:
        """Turn raw request text into a response envelope and exit code."""
        try:
            request = DriverRequest.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Unreadable request: %s", e)
            return DriverResponse.fail(f"invalid request: {e}"), 1

        handler = self._handlers.get(request.method)
        if handler is None:
            logger.error("Unknown method: %s", request.method)
            return DriverResponse.fail(f"unknown method: {request.method}"), 1

        try:
            data = await handler(request.params)
        except Exception as e:
            logger.exception("%s failed", request.method)
            return DriverResponse.fail(str(e) or type(e).__name__), 0

        return DriverResponse.ok(data), 0

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
        """Serve a single request from *stdin* to *stdout*.

        Returns:
            Process exit code.
        """
        logging.basicConfig(
            stream=sys.stderr,
            level=os.environ.get("DBSNAP_DRIVER_LOG_LEVEL", "WARNING").upper(),
            format=f"[{self.name}] %(levelname)s %(message)s",
        )
        source = stdin if stdin is not None else sys.stdin
        sink = stdout if stdout is not None else sys.stdout

        raw = source.read()
        response, code = asyncio.run(self.handle(raw))

        sink.write(response.to_wire() + "\n")
        sink.flush()
        return code
