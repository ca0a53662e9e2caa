"""Facebook Graph API client for ad insights and creatives.

WHAT:
    Thin wrapper over the facebook_business SDK's raw Graph calls:
    - Ad-level daily insights with cursor pagination (paging.next)
    - Rate-limit backoff (error codes 4 and 17) and network retries
    - Ad creative and video metadata lookups for transcripts

WHY:
    - Insights come back as raw JSON rows; flattening happens in
      ad_spend_service so the client stays a pure fetch layer
    - A failed page aborts the whole fetch: callers never upsert a
      partial window
    - `api` and `sleep` are injectable so tests never hit the network or wait

REFERENCES:
    - https://developers.facebook.com/docs/marketing-api/insights
    - funnelboard/services/ad_spend_service.py (consumer)
    - funnelboard/services/transcript_service.py (creative lookups)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import requests
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v19.0"

# Graph error codes meaning "slow down": 4 = app-level, 17 = user-level limit
RATE_LIMIT_ERROR_CODES = (4, 17)
MAX_RETRIES = 3
RATE_LIMIT_BACKOFF_SECONDS = 30
NETWORK_RETRY_DELAY_SECONDS = 5
PAGE_LIMIT = 500

# Full metric set used by the recurring sync
SYNC_INSIGHT_FIELDS = [
    "ad_id", "ad_name", "campaign_id", "campaign_name", "adset_id", "adset_name",
    "spend", "impressions", "clicks", "reach", "frequency",
    "cpm", "cpc", "ctr", "cpp",
    "outbound_clicks", "outbound_clicks_ctr", "cost_per_outbound_click",
    "video_play_actions", "video_thruplay_watched_actions",
    "video_p25_watched_actions", "video_p50_watched_actions",
    "video_p75_watched_actions", "video_p95_watched_actions",
    "video_p100_watched_actions", "video_avg_time_watched_actions",
    "actions",
]

# Historical importer keeps to delivery metrics plus conversion actions
IMPORT_INSIGHT_FIELDS = [
    "ad_id", "ad_name", "campaign_id", "campaign_name", "adset_id", "adset_name",
    "spend", "impressions", "clicks", "reach", "cpm", "cpc", "ctr",
    "actions",
]

CREATIVE_FIELDS = "creative{id,video_id,image_url,thumbnail_url,object_story_spec,effective_object_story_id}"
VIDEO_FIELDS = "id,source,title,description,length,picture"

GraphPath = Union[str, Tuple[str, ...]]


class MetaGraphAPIError(Exception):
    """Custom exception for Graph API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class MetaRateLimitError(MetaGraphAPIError):
    """Rate limit still hit after every backoff attempt."""


def normalize_account_id(account_id: str) -> str:
    """Graph expects ad account ids as act_<digits>."""
    account_id = account_id.strip()
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


class MetaGraphClient:
    """Graph API access for a single access token.

    Usage:
        client = MetaGraphClient(access_token="EAAB...")
        rows = client.fetch_ad_insights("1234567890", "2024-01-01", "2024-01-07")
    """

    def __init__(
        self,
        access_token: str,
        api_version: str = GRAPH_API_VERSION,
        api: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: int = 60,
    ):
        self.access_token = access_token
        self.api_version = api_version
        self.api = api or FacebookAdsApi.init(
            access_token=access_token,
            api_version=api_version,
            timeout=timeout,
            crash_log=False,
        )
        self._sleep = sleep
        logger.info(f"[META_GRAPH] Initialized (API version: {api_version})")

    # =========================================================================
    # LOW-LEVEL REQUEST
    # =========================================================================

    def _get(self, path: GraphPath, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET one Graph resource with rate-limit and network retries.

        WHAT:
            - Error codes 4/17: wait attempt x 30s and retry, up to MAX_RETRIES
            - Network failures: wait 5s and retry, up to MAX_RETRIES
            - Any other Graph error: raise immediately

        Raises:
            MetaRateLimitError: Still rate limited after all retries
            MetaGraphAPIError: Any other Graph or transport failure
        """
        rate_limit_attempts = 0
        network_attempts = 0

        while True:
            try:
                response = self.api.call("GET", path, params=params or {})
                return response.json()
            except FacebookRequestError as e:
                error_code = e.api_error_code()
                if error_code in RATE_LIMIT_ERROR_CODES:
                    rate_limit_attempts += 1
                    if rate_limit_attempts > MAX_RETRIES:
                        raise MetaRateLimitError(
                            f"Facebook API rate limit exceeded after {MAX_RETRIES} retries",
                            status_code=e.http_status(),
                            error_code=error_code,
                        )
                    wait = rate_limit_attempts * RATE_LIMIT_BACKOFF_SECONDS
                    logger.warning(
                        f"[META_GRAPH] Rate limited (code {error_code}), waiting {wait}s "
                        f"(attempt {rate_limit_attempts}/{MAX_RETRIES})"
                    )
                    self._sleep(wait)
                    continue

                message = e.api_error_message() or str(e)
                logger.error(f"[META_GRAPH] API error code={error_code}: {message}")
                raise MetaGraphAPIError(
                    f"Facebook API error: {message}",
                    status_code=e.http_status(),
                    error_code=error_code,
                )
            except requests.exceptions.RequestException as e:
                network_attempts += 1
                if network_attempts > MAX_RETRIES:
                    raise MetaGraphAPIError(f"Facebook API request failed: {e}")
                logger.warning(
                    f"[META_GRAPH] Request error: {e} (attempt {network_attempts}/{MAX_RETRIES})"
                )
                self._sleep(NETWORK_RETRY_DELAY_SECONDS)

    # =========================================================================
    # INSIGHTS
    # =========================================================================

    def fetch_ad_insights(
        self,
        account_id: str,
        start_date: str,
        end_date: str,
        fields: Sequence[str] = SYNC_INSIGHT_FIELDS,
        campaign_ids: Optional[Sequence[str]] = None,
        include_inactive: bool = False,
        page_delay: float = 0,
    ) -> List[Dict[str, Any]]:
        """Fetch every ad-level daily insight row for the window.

        Args:
            account_id: Ad account id, with or without the act_ prefix
            start_date: YYYY-MM-DD (inclusive)
            end_date: YYYY-MM-DD (inclusive)
            fields: Insight fields to request
            campaign_ids: Restrict to these campaigns
            include_inactive: Also return ads that are no longer delivering
            page_delay: Seconds to wait between pages

        Returns:
            Raw insight rows in upstream order

        Raises:
            MetaGraphAPIError: On any page failure; no partial result is returned
        """
        act_id = normalize_account_id(account_id)
        params: Dict[str, Any] = {
            "fields": ",".join(fields),
            "level": "ad",
            "time_range": json.dumps({"since": start_date, "until": end_date}),
            "time_increment": 1,
            "limit": PAGE_LIMIT,
        }
        if campaign_ids:
            params["filtering"] = json.dumps(
                [{"field": "campaign.id", "operator": "IN", "value": list(campaign_ids)}]
            )
        if include_inactive:
            params["date_preset"] = "maximum"

        logger.info(f"[META_GRAPH] Fetching insights for {act_id}: {start_date} to {end_date}")

        rows: List[Dict[str, Any]] = []
        page = self._get((act_id, "insights"), params)
        page_count = 1
        while True:
            rows.extend(page.get("data") or [])
            next_url = (page.get("paging") or {}).get("next")
            if not next_url:
                break
            if page_delay:
                self._sleep(page_delay)
            page = self._get(next_url)
            page_count += 1

        logger.info(f"[META_GRAPH] Fetched {len(rows)} insight rows across {page_count} page(s)")
        return rows

    # =========================================================================
    # CREATIVES
    # =========================================================================

    def get_ad_creative(self, ad_id: str) -> Dict[str, Any]:
        """Return the creative object attached to an ad.

        Raises:
            MetaGraphAPIError: Graph failure, or the ad has no creative
        """
        data = self._get((ad_id,), {"fields": CREATIVE_FIELDS})
        creative = data.get("creative")
        if not creative:
            raise MetaGraphAPIError("No creative found for this ad")
        return creative

    def get_video_details(self, video_id: str) -> Dict[str, Any]:
        """Return source URL, title, length and thumbnail for a video."""
        return self._get((video_id,), {"fields": VIDEO_FIELDS})
