"""
Client-side store for the studio booking API.

GymStore keeps what the app shows (profile, ticket count, subscription,
session list), persists it to a small JSON cache so a fresh start can
render immediately, and applies cancellations optimistically: the local
state changes first and is restored if the server rejects the request.
"""
import copy
import json
import logging
import os
import time
from typing import Callable, List, Optional, Tuple

import requests

from .settings import CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

CACHE_KEYS = ("profile", "credits", "subscription", "sessions")


class StudioAPIError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LocalCache:
    """JSON file of values with the time they were stored"""

    def __init__(self, path: str, ttl: int = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.path = path
        self.ttl = ttl
        self.clock = clock

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed cache {self.path}")
            return {}
        return data

    def get(self, key: str):
        """Stored value, or None when missing or older than the TTL"""
        entry = self._read().get(key)
        if not isinstance(entry, dict) or "value" not in entry:
            return None
        stored_at = entry.get("stored_at")
        if not isinstance(stored_at, (int, float)) or self.clock() - stored_at > self.ttl:
            return None
        return entry["value"]

    def set(self, key: str, value):
        data = self._read()
        data[key] = {"value": value, "stored_at": self.clock()}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def clear(self):
        if os.path.exists(self.path):
            os.remove(self.path)


class GymStore:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        token: Optional[str] = None,
        http=None,
        cache: Optional[LocalCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        # Anything with a requests-style request() works (requests.Session, TestClient)
        self.http = http or requests.Session()
        self.cache = cache

        self.profile: Optional[dict] = None
        self.credits: int = 0
        self.subscription: Optional[dict] = None
        self.sessions: List[dict] = []
        self.loading = True

    # ---------- HTTP ----------

    def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = self.http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            if not isinstance(detail, str):
                detail = str(detail) if detail else f"Request failed ({response.status_code})"
            raise StudioAPIError(detail, response.status_code)
        return response.json()

    def login(self, email: str, password: str):
        tokens = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = tokens["access_token"]

    # ---------- Cache ----------

    def load_cached(self) -> bool:
        """Show fresh cached data right away; True when profile and credits were cached"""
        if self.cache is None:
            return False

        profile = self.cache.get("profile")
        credits = self.cache.get("credits")
        if profile is not None:
            self.profile = profile
        if credits is not None:
            self.credits = credits
        subscription = self.cache.get("subscription")
        if subscription is not None:
            self.subscription = subscription
        sessions = self.cache.get("sessions")
        if sessions is not None:
            self.sessions = sessions

        if profile is not None and credits is not None:
            self.loading = False
            return True
        return False

    def _save(self):
        if self.cache is None:
            return
        self.cache.set("profile", self.profile)
        self.cache.set("credits", self.credits)
        self.cache.set("subscription", self.subscription)
        self.cache.set("sessions", self.sessions)

    # ---------- Server state ----------

    def refresh(self):
        """Replace local state with the server's"""
        try:
            self.profile = self._request("GET", "/api/auth/me")
            self.credits = self._request("GET", "/api/tickets")["balance"]
            self.subscription = self._request("GET", "/api/subscription")
            self.sessions = self._request("GET", "/api/sessions")
            self._save()
        finally:
            self.loading = False

    def _find(self, session_id: int) -> Optional[dict]:
        for session in self.sessions:
            if session["id"] == session_id:
                return session
        return None

    @staticmethod
    def can_book(session: dict) -> Tuple[bool, str]:
        """Whether the book button is enabled, and its label"""
        if session.get("is_registered"):
            return False, "Registered"
        if session.get("current_bookings", 0) >= session["max_capacity"]:
            return False, "Full"
        return True, "Book"

    def book(self, session_id: int) -> dict:
        try:
            result = self._request("POST", f"/api/sessions/{session_id}/book")
        except (StudioAPIError, requests.RequestException) as e:
            logger.info(f"Booking session #{session_id} failed: {e}")
            return {"success": False, "message": str(e)}

        session = self._find(session_id)
        if session is not None:
            session["is_registered"] = True
            session["current_bookings"] = session.get("current_bookings", 0) + 1
            session["is_full"] = session["current_bookings"] >= session["max_capacity"]
        self.credits = result["balance"]
        self._save()
        return {"success": True, "message": result["message"]}

    def cancel_booking(self, session_id: int) -> dict:
        """Optimistic cancel: update locally, call the server, roll back on failure"""
        previous_sessions = copy.deepcopy(self.sessions)
        previous_credits = self.credits

        self.sessions = [
            dict(s, is_registered=False, current_bookings=max(0, s.get("current_bookings", 0) - 1), is_full=False)
            if s["id"] == session_id else s
            for s in self.sessions
        ]
        self.credits = previous_credits + 1

        try:
            result = self._request("POST", f"/api/sessions/{session_id}/cancel")
        except (StudioAPIError, requests.RequestException) as e:
            logger.info(f"Cancel of session #{session_id} failed, reverting: {e}")
            self.sessions = previous_sessions
            self.credits = previous_credits
            return {"success": False, "message": str(e) or "Failed to cancel"}

        self.credits = result["balance"]
        try:
            self.refresh()
        except (StudioAPIError, requests.RequestException) as e:
            # Cancellation is committed; keep the optimistic view until the next refresh
            logger.warning(f"Refresh after cancel failed: {e}")
            self._save()

        return {"success": True, "message": result["message"]}
