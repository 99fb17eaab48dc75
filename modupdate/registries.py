from __future__ import annotations

import logging
from typing import Any, Collection, Dict, List, Optional

from pydantic import ValidationError

from .errors import ParseError, RegistryError
from .models import (
    BatchResult,
    Constraints,
    FingerprintRequest,
    ModrinthUpdateRequest,
    ModrinthVersion,
    Registry,
    RegistryMatch,
)
from .transport import Transport, UrllibTransport

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "modupdate/dev"


class RegistryClient:
    """One batched lookup per call; failures come back as an empty result.

    Adapters override the lookup their registry supports. The other one
    reports no matches without touching the network.
    """

    registry: Registry

    def __init__(
        self,
        api_base: str,
        transport: Optional[Transport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.transport = transport or UrllibTransport()
        self.user_agent = user_agent

    def lookup_by_digests(
        self, digests: Collection[str], constraints: Constraints
    ) -> BatchResult[Dict[str, ModrinthVersion]]:
        return BatchResult(items={})

    def lookup_by_fingerprints(self, fingerprints: Collection[int]) -> BatchResult[List[RegistryMatch]]:
        return BatchResult(items=[])

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.api_base}{path}"
        return self.transport.post_json(url, payload, headers=self._headers())


class ModrinthClient(RegistryClient):
    API_BASE = "https://api.modrinth.com/v2"
    registry = Registry.MODRINTH

    def __init__(
        self,
        api_base: str = API_BASE,
        transport: Optional[Transport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        super().__init__(api_base, transport=transport, user_agent=user_agent)

    def lookup_by_digests(
        self, digests: Collection[str], constraints: Constraints
    ) -> BatchResult[Dict[str, ModrinthVersion]]:
        if not digests:
            return BatchResult(items={})

        request = ModrinthUpdateRequest(
            hashes=sorted(digests),
            loaders=list(constraints.loaders),
            game_versions=[constraints.game_version] if constraints.game_version else [],
        )
        try:
            payload = self._post("/version_files/update", request.model_dump())
            if not isinstance(payload, dict):
                raise ParseError("Modrinth update response is not a JSON object")
        except RegistryError as exc:
            logger.error("Modrinth lookup for %d file(s) failed: %s", len(digests), exc)
            return BatchResult(items={}, error=exc)

        results: Dict[str, ModrinthVersion] = {}
        for digest, record in payload.items():
            try:
                results[digest] = ModrinthVersion.model_validate(record)
            except ValidationError as exc:
                logger.warning("Skipping malformed Modrinth record for %s: %s", digest, exc)
        logger.info("Modrinth returned %d version record(s) for %d file(s)", len(results), len(digests))
        return BatchResult(items=results)


class CurseForgeClient(RegistryClient):
    API_BASE = "https://api.curseforge.com/v1"
    GAME_ID = 432
    registry = Registry.CURSEFORGE

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: str = API_BASE,
        transport: Optional[Transport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        super().__init__(api_base, transport=transport, user_agent=user_agent)
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["x-api-key"] = self.api_key or ""
        return headers

    def lookup_by_fingerprints(self, fingerprints: Collection[int]) -> BatchResult[List[RegistryMatch]]:
        if not fingerprints:
            return BatchResult(items=[])
        if not self.api_key:
            error = RegistryError(
                "CurseForge API key missing. Set MODUPDATE_CURSEFORGE_API_KEY or add curseforge_api_key to .modupdate.json."
            )
            logger.warning("%s", error)
            return BatchResult(items=[], error=error)

        request = FingerprintRequest(fingerprints=sorted(fingerprints))
        try:
            payload = self._post(f"/fingerprints/{self.GAME_ID}", request.model_dump())
            raw_matches = self._extract_matches(payload)
        except RegistryError as exc:
            logger.error("CurseForge lookup for %d file(s) failed: %s", len(fingerprints), exc)
            return BatchResult(items=[], error=exc)

        matches: List[RegistryMatch] = []
        for raw in raw_matches:
            try:
                matches.append(RegistryMatch.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed CurseForge match: %s", exc)
        logger.info("CurseForge matched %d of %d fingerprint(s)", len(matches), len(fingerprints))
        return BatchResult(items=matches)

    def _extract_matches(self, payload: Any) -> List[Any]:
        if not isinstance(payload, dict):
            raise ParseError("CurseForge fingerprint response is not a JSON object")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ParseError("CurseForge fingerprint response has no 'data' object")
        exact = data.get("exactMatches") or []
        if not isinstance(exact, list):
            raise ParseError("CurseForge 'exactMatches' is not a list")
        return exact
