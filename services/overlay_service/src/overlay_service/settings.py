"""
Configuration for the overlay engine.

The selectors describe the host page's markup. They change when the host
changes its markup; the reconciliation algorithm does not.

Environment variables:
    HANDLE_TAGGER_DEBOUNCE_S                 Quiet period before a pass runs
    HANDLE_TAGGER_BASE_URL                   Base for resolving permalink hrefs
    HANDLE_TAGGER_PROFILE_HANDLE_SELECTOR    Profile-header identity anchor
    HANDLE_TAGGER_CONTENT_HANDLE_SELECTOR    Content-item identity anchor
    HANDLE_TAGGER_CONTENT_ITEM_SELECTOR      Enclosing content item
    HANDLE_TAGGER_PROVENANCE_SELECTOR        Timestamp element inside the permalink
    HANDLE_TAGGER_RELEVANCE_SELECTOR         Nodes whose churn schedules a pass
    HANDLE_TAGGER_OBSERVE_ROOT_SELECTORS     JSON list of observation roots, first match wins
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class OverlaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HANDLE_TAGGER_", extra="ignore")

    debounce_s: float = 0.5
    base_url: str = "https://x.com"

    profile_handle_selector: str = (
        'div[data-testid="UserProfileHeader_Items"] a[href*="/"][role="link"][dir="ltr"]'
    )
    content_handle_selector: str = (
        'article[data-testid="tweet"] div[data-testid="User-Name"] a[href*="/"][role="link"][dir="ltr"]'
    )
    content_item_selector: str = 'article[data-testid="tweet"]'
    provenance_selector: str = "a time"
    relevance_selector: str = 'article, [data-testid*="User"]'
    observe_root_selectors: list[str] = ['[data-testid="primaryColumn"]', "main"]


settings = OverlaySettings()
