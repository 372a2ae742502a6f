"""Source client for the Supabase auth admin API.

The connector validates the service credential, reports the user count when
the provider exposes it, and pages through the admin user listing, turning
each entry into a ``SourceUserRecord``. Password hashes are never exposed by
the admin API, so every record reports ``has_password=False``.
"""

from typing import Any

import httpx

from user_import.client.base_client import BaseAPIClient
from user_import.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    InvalidCredentialError,
    NetworkError,
    SourceFetchError,
    UnreachableError,
    UnrecoverableSourceError,
)
from user_import.config import PerformanceConfig, SourceConfig
from user_import.records import OAuthLink, SourceUserRecord
from user_import.utils.logging import get_logger
from user_import.utils.retry import TRANSIENT_ERRORS, call_with_retry

logger = get_logger(__name__)

# Identity providers that describe first-party sign-in rather than an OAuth link
NON_OAUTH_PROVIDERS = frozenset({"email", "phone"})

DISPLAY_NAME_KEYS = ("full_name", "name", "display_name")
AVATAR_KEYS = ("avatar_url", "picture")


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) and value else None


def _first_present(metadata: dict[str, Any] | None, keys: tuple[str, ...]) -> str | None:
    if not metadata:
        return None
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


def parse_source_user(data: dict[str, Any]) -> SourceUserRecord:
    """Translate one admin API user object into a ``SourceUserRecord``.

    Raises:
        UnrecoverableSourceError: If the entry is not a JSON object
    """
    if not isinstance(data, dict):
        raise UnrecoverableSourceError(f"Unexpected user entry type: {type(data).__name__}")

    user_metadata = _as_dict(data.get("user_metadata") or data.get("raw_user_meta_data"))
    app_metadata = _as_dict(data.get("app_metadata") or data.get("raw_app_meta_data"))

    identities = data.get("identities")
    links = []
    for identity in identities if isinstance(identities, list) else []:
        # Entries that are not objects carry no provider link
        if not isinstance(identity, dict):
            continue
        provider = identity.get("provider")
        if not provider or provider in NON_OAUTH_PROVIDERS:
            continue
        identity_data = _as_dict(identity.get("identity_data")) or {}
        provider_user_id = identity.get("id") or identity_data.get("sub")
        if not provider_user_id:
            continue
        links.append(
            OAuthLink(
                provider=provider,
                provider_user_id=str(provider_user_id),
                identity_data=identity_data,
            )
        )

    email = data.get("email")
    phone = (data.get("phone") or "").strip() or None

    return SourceUserRecord(
        source_id=str(data["id"]) if data.get("id") is not None else None,
        email=email if isinstance(email, str) else None,
        display_name=_first_present(user_metadata, DISPLAY_NAME_KEYS),
        avatar_url=_first_present(user_metadata, AVATAR_KEYS),
        has_password=False,
        has_oauth=bool(links),
        oauth_links=tuple(links),
        user_metadata=user_metadata,
        app_metadata=app_metadata,
        email_verified=bool(data.get("email_confirmed_at")),
        phone=phone,
        phone_verified=bool(data.get("phone_confirmed_at")),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        last_sign_in_at=data.get("last_sign_in_at"),
    )


class SourceConnector(BaseAPIClient):
    """Client for the source identity provider's admin user listing."""

    def __init__(
        self,
        url: str,
        credential: str,
        config: SourceConfig | None = None,
        performance: PerformanceConfig | None = None,
        log_payloads: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the source connector.

        Args:
            url: Base URL of the provider project (e.g. https://xyz.supabase.co)
            credential: Service role key
            config: Source connection settings
            performance: Retry settings for page fetches
            log_payloads: Enable response payload logging (credentials redacted)
            transport: Optional httpx transport
        """
        self.config = config or SourceConfig()
        self.performance = performance or PerformanceConfig()
        super().__init__(
            base_url=url,
            token=credential,
            verify_ssl=self.config.verify_ssl,
            timeout=self.config.timeout,
            rate_limit=self.config.rate_limit,
            log_payloads=log_payloads,
            transport=transport,
        )

    def _build_headers(self) -> dict[str, str]:
        headers = super()._build_headers()
        headers["apikey"] = self.token
        return headers

    async def _list_users(self, page: int, per_page: int) -> httpx.Response:
        return await self.send(
            "GET", self.config.admin_path, params={"page": page, "per_page": per_page}
        )

    async def validate(self) -> None:
        """Perform a lightweight authenticated call against the provider.

        Raises:
            InvalidCredentialError: If the credential is rejected
            UnreachableError: If the provider cannot be reached or answers unusably
        """
        try:
            response = await self._list_users(page=1, per_page=1)
            response.json()
        except (AuthenticationError, AuthorizationError) as e:
            logger.warning("source_credential_rejected", url=self.base_url, status=e.status_code)
            raise InvalidCredentialError("Source provider rejected the credential") from e
        except (NetworkError, APIError) as e:
            logger.warning("source_unreachable", url=self.base_url, error=str(e))
            raise UnreachableError(f"Source provider unreachable: {e}") from e
        except ValueError as e:
            raise UnreachableError("Source provider returned a non-JSON response") from e

        logger.info("source_credential_validated", url=self.base_url)

    async def count(self) -> int | None:
        """Return the total number of users, or None when the provider does not say."""
        try:
            response = await self._list_users(page=1, per_page=1)
            body = response.json()
        except (NetworkError, APIError, ValueError) as e:
            logger.warning("source_count_unavailable", url=self.base_url, error=str(e))
            return None

        total = response.headers.get("x-total-count")
        if total is None and isinstance(body, dict):
            total = body.get("total")

        try:
            return int(total) if total is not None else None
        except (TypeError, ValueError):
            return None

    async def page(
        self, cursor: int, page_size: int
    ) -> tuple[list[SourceUserRecord], int | None]:
        """Fetch one page of users.

        Args:
            cursor: 1-based page number
            page_size: Users per page

        Returns:
            The page's records and the next cursor (None after the last page)

        Raises:
            InvalidCredentialError: If the credential is rejected mid-run
            SourceFetchError: If transient failures outlast the retry budget
            UnrecoverableSourceError: If the provider answers with unusable data
        """
        per_page = min(page_size, self.config.max_page_size)

        try:
            response = await call_with_retry(
                self._list_users,
                cursor,
                per_page,
                max_attempts=self.performance.retry_attempts,
                min_wait=self.performance.retry_backoff_min,
                max_wait=self.performance.retry_backoff_max,
                retry_on_exceptions=TRANSIENT_ERRORS,
            )
        except (AuthenticationError, AuthorizationError) as e:
            raise InvalidCredentialError(
                "Source provider rejected the credential", cursor=cursor
            ) from e
        except TRANSIENT_ERRORS as e:
            logger.error("source_page_fetch_failed", cursor=cursor, error=str(e))
            raise SourceFetchError(f"Failed to fetch page {cursor}: {e}", cursor=cursor) from e
        except APIError as e:
            raise UnrecoverableSourceError(
                f"Source provider refused page {cursor}: {e}", cursor=cursor
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise UnrecoverableSourceError(
                f"Page {cursor} is not valid JSON", cursor=cursor
            ) from e

        users = body.get("users") if isinstance(body, dict) else None
        if not isinstance(users, list):
            raise UnrecoverableSourceError(f"Page {cursor} has no user list", cursor=cursor)

        records = [parse_source_user(user) for user in users]

        next_cursor: int | None = cursor + 1
        total = response.headers.get("x-total-count")
        if len(users) < per_page:
            next_cursor = None
        elif total is not None and total.isdigit() and cursor * per_page >= int(total):
            next_cursor = None

        logger.debug(
            "page_fetched",
            cursor=cursor,
            items=len(records),
            next_cursor=next_cursor,
        )
        return records, next_cursor
