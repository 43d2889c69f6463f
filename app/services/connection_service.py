from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from app import db
from app.config import Settings
from app.errors import IntegrationError
from app.services.hubspot_service import create_hubspot_service
from app.services.pipedream_service import PipedreamClient


class ConnectionTestResult:
    """Result of a connection test."""

    def __init__(self, service: str, success: bool, response_time: float, error: Optional[str] = None):
        self.service = service
        self.success = success
        self.response_time = response_time
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "success": self.success,
            "response_time": self.response_time,
            "error": self.error,
        }


class ConnectionService:
    """Checks configuration and reachability of every external dependency."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    async def test_google_oauth_config(self) -> ConnectionTestResult:
        """GBP manager account: client credentials plus a refresh or static token."""
        start_time = time.time()
        google = self.settings.google
        missing = []
        if not google.client_id:
            missing.append("GBP_CLIENT_ID")
        if not google.client_secret:
            missing.append("GBP_CLIENT_SECRET")
        if not (google.refresh_token or google.access_token):
            missing.append("GBP_REFRESH_TOKEN or GBP_ACCESS_TOKEN")

        error = f"Missing: {', '.join(missing)}" if missing else None
        return ConnectionTestResult("Google OAuth", not missing, time.time() - start_time, error)

    async def test_pipedream_connection(self) -> ConnectionTestResult:
        """Authenticate against Pipedream Connect."""
        start_time = time.time()
        try:
            client = PipedreamClient(self.settings.pipedream, self.http_client, timeout=10)
            await client.authenticate()
            return ConnectionTestResult("Pipedream", True, time.time() - start_time)
        except IntegrationError as e:
            return ConnectionTestResult("Pipedream", False, time.time() - start_time, str(e))

    async def test_hubspot_connection(self) -> ConnectionTestResult:
        """Test HubSpot API connection."""
        start_time = time.time()
        try:
            service = create_hubspot_service(
                self.settings.hubspot_access_token, http_client=self.http_client, timeout=10
            )
            status = await service.test_connection()
            return ConnectionTestResult(
                "HubSpot", status["connected"], time.time() - start_time, status.get("error")
            )
        except IntegrationError as e:
            return ConnectionTestResult("HubSpot", False, time.time() - start_time, str(e))

    async def test_supabase_connection(self) -> ConnectionTestResult:
        """Test Supabase connection."""
        start_time = time.time()
        try:
            if db.SUPABASE is None:
                raise ValueError("Supabase URL or service role key not configured")
            # Lightweight read against the connections table
            await asyncio.to_thread(
                lambda: db.SUPABASE.table("pipedream_connected_accounts").select("id").limit(1).execute()
            )
            return ConnectionTestResult("Supabase", True, time.time() - start_time)
        except Exception as e:
            return ConnectionTestResult("Supabase", False, time.time() - start_time, str(e))

    async def test_all_connections(self) -> List[ConnectionTestResult]:
        """Test all external service connections concurrently."""
        results = await asyncio.gather(
            self.test_google_oauth_config(),
            self.test_pipedream_connection(),
            self.test_hubspot_connection(),
            self.test_supabase_connection(),
        )
        return list(results)

    def get_connection_summary(self, results: List[ConnectionTestResult]) -> Dict[str, Any]:
        """Get a summary of all connection test results."""
        total_tests = len(results)
        successful_tests = sum(1 for r in results if r.success)
        failed_tests = total_tests - successful_tests

        avg_response_time = sum(r.response_time for r in results) / total_tests if total_tests > 0 else 0

        return {
            "total_tests": total_tests,
            "successful_tests": successful_tests,
            "failed_tests": failed_tests,
            "success_rate": (successful_tests / total_tests * 100) if total_tests > 0 else 0,
            "average_response_time": avg_response_time,
            "results": [r.to_dict() for r in results],
        }
